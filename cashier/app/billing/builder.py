"""Fluent builder that registers new subscriptions with the gateway."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Mapping, Optional

from ...exceptions import AccountNotRegistered
from ...gateway.client import GatewayClient
from ...gateway.models import SubscriptionRequest
from .amounts import amount_with_tax
from .catalog import PlanDefinition, get_plan_definition
from .clock import CANONICAL_TIMEZONE, Clock, ensure_aware, utcnow
from .models import BillableAccount, Subscription
from .subscriptions import BillingRepository

logger = logging.getLogger(__name__)


class SubscriptionBuilder:
    """Collects subscription options, then creates it via :meth:`create`."""

    def __init__(
        self,
        account: BillableAccount,
        name: str,
        plan_id: str,
        *,
        repository: BillingRepository,
        gateway: GatewayClient,
        plans: Optional[Mapping[str, PlanDefinition]] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.account = account
        self.name = name
        self.plan_id = plan_id
        self._repository = repository
        self._gateway = gateway
        self._plans = plans
        self._clock = clock
        self._quantity = 1
        self._trial_days: Optional[int] = None
        self._skip_trial = False
        self._coupon: Optional[str] = None
        self._metadata: Dict[str, str] = {}

    def quantity(self, quantity: int) -> "SubscriptionBuilder":
        if quantity < 1:
            raise ValueError("quantity must be >= 1")
        self._quantity = quantity
        return self

    def trial_days(self, trial_days: int) -> "SubscriptionBuilder":
        if trial_days < 0:
            raise ValueError("trial_days must be >= 0")
        self._trial_days = trial_days
        return self

    def skip_trial(self) -> "SubscriptionBuilder":
        self._skip_trial = True
        return self

    def with_coupon(self, coupon: str) -> "SubscriptionBuilder":
        self._coupon = coupon
        return self

    def with_metadata(self, metadata: Mapping[str, object]) -> "SubscriptionBuilder":
        self._metadata = {str(key): str(value) for key, value in metadata.items()}
        return self

    def add(self) -> Subscription:
        return self.create()

    def create(self) -> Subscription:
        """Register the subscription with the gateway and persist it.

        Raises ``UnknownPlan``, ``AccountNotRegistered``, ``GatewayRejected`` or
        ``GatewayUnavailable``; no row is written when any of them is raised.
        """

        plan = get_plan_definition(self.plan_id, self._plans)
        trial_days = self._trial_days if self._trial_days is not None else plan.trial_days
        now = ensure_aware(self._clock())

        if not self.account.has_gateway_profile:
            raise AccountNotRegistered(self.account.account_id)

        request = self.build_request(plan, trial_days, now)
        receipt = self._gateway.create_subscription(request)

        subscription = Subscription(
            account_id=self.account.account_id,
            name=self.name,
            plan_id=plan.key,
            gateway_subscription_id=receipt.subscription_id,
            gateway_payment_profile_id=self.account.gateway_payment_profile_id,
            quantity=self._quantity,
            trial_ends_at=self._trial_end(trial_days, now),
            ends_at=None,
            metadata=self._row_metadata(receipt.ref_id),
            created_at=now,
            updated_at=now,
        )
        persisted = self._repository.create_subscription(subscription)
        logger.info(
            "Subscription created",
            extra={
                "subscription_id": persisted.subscription_id,
                "account_id": persisted.account_id,
                "plan_id": persisted.plan_id,
                "gateway_subscription_id": persisted.gateway_subscription_id,
                "ref_id": receipt.ref_id,
            },
        )
        return persisted

    def build_request(self, plan: PlanDefinition, trial_days: int, now: datetime) -> SubscriptionRequest:
        start = now.astimezone(CANONICAL_TIMEZONE) + timedelta(days=trial_days)
        return SubscriptionRequest(
            name=plan.display_name,
            interval_unit=plan.interval.unit.value,
            interval_length=plan.interval.length,
            start_date=start.date(),
            total_occurrences=plan.total_occurrences,
            trial_occurrences=plan.trial_occurrences,
            amount=amount_with_tax(plan.amount, self.account.tax_percentage),
            trial_amount=plan.trial_amount,
            customer_profile_id=self.account.gateway_customer_id,
            payment_profile_id=self.account.gateway_payment_profile_id,
        )

    def _trial_end(self, trial_days: int, now: datetime) -> Optional[datetime]:
        if self._skip_trial or trial_days <= 0:
            return None
        return now + timedelta(days=trial_days)

    def _row_metadata(self, ref_id: str) -> Dict[str, str]:
        metadata = dict(self._metadata)
        if self._coupon:
            metadata["coupon"] = self._coupon
        metadata["ref_id"] = ref_id
        return metadata


__all__ = ["SubscriptionBuilder"]
