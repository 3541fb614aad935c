"""Subscription lifecycle transitions: cancellation and grace periods."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence

from ...exceptions import InvalidState
from ...gateway.client import GatewayClient
from .catalog import PLAN_CATALOG, PlanDefinition, get_plan_definition
from .clock import Clock, anchored_billing_date, days_from, ensure_aware, utcnow
from .models import BillableAccount, Subscription

logger = logging.getLogger(__name__)


class BillingRepository(Protocol):
    """Persistence operations required by the billing services."""

    def get_account(self, account_id: str) -> Optional[BillableAccount]:
        ...

    def save_account(self, account: BillableAccount) -> BillableAccount:
        ...

    def create_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def save_subscription(self, subscription: Subscription, *, expected_version: int) -> Subscription:
        """Persist ``subscription`` only if the stored version still equals ``expected_version``."""

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def list_subscriptions(self, *, account_id: Optional[str] = None) -> Sequence[Subscription]:
        """Subscriptions ordered newest first."""


def persist_changes(
    repository: BillingRepository,
    subscription: Subscription,
    changes: Mapping[str, Any],
    now: datetime,
) -> Subscription:
    """Write ``changes`` guarded by the subscription's version."""

    if subscription.subscription_id is None:
        raise InvalidState("Subscription has not been persisted yet")
    updated = subscription.model_copy(
        update={**changes, "updated_at": now, "version": subscription.version + 1}
    )
    return repository.save_subscription(updated, expected_version=subscription.version)


@dataclass
class SubscriptionService:
    """Cancels subscriptions against the gateway and tracks grace periods."""

    repository: BillingRepository
    gateway: GatewayClient
    plans: Mapping[str, PlanDefinition] = field(default_factory=lambda: PLAN_CATALOG)
    clock: Clock = utcnow

    def _now(self) -> datetime:
        return ensure_aware(self.clock())

    def billing_days(self, subscription: Subscription) -> int:
        return get_plan_definition(subscription.plan_id, self.plans).billing_days

    def ending_boundary(self, subscription: Subscription, now: Optional[datetime] = None) -> datetime:
        """End of the grace period a cancellation at ``now`` would grant."""

        current = now or self._now()
        billing_date = anchored_billing_date(subscription.billing_anchor_day, current)
        if billing_date <= current:
            return days_from(billing_date, self.billing_days(subscription))
        return billing_date

    def cancel(self, subscription: Subscription) -> Subscription:
        """Cancel at the end of the current billing period.

        Nothing is written locally unless the gateway confirms the
        cancellation; gateway errors propagate unchanged.
        """

        now = self._now()
        self._ensure_cancellable(subscription, now)
        ends_at = self.ending_boundary(subscription, now)

        self.gateway.cancel_subscription(subscription.gateway_subscription_id)

        # A cancelled trial ends with the trial; no extra grace is owed.
        if subscription.on_trial(now):
            ends_at = subscription.trial_ends_at

        updated = persist_changes(self.repository, subscription, {"ends_at": ends_at}, now)
        logger.info(
            "Subscription %s cancelled; grace period ends %s",
            updated.subscription_id,
            updated.ends_at.isoformat() if updated.ends_at else None,
        )
        return updated

    def cancel_now(self, subscription: Subscription) -> Subscription:
        """Cancel with the gateway and end the subscription immediately."""

        return self.mark_as_cancelled(self.cancel(subscription))

    def mark_as_cancelled(self, subscription: Subscription) -> Subscription:
        """End the subscription locally without contacting the gateway."""

        now = self._now()
        changes: Dict[str, Any] = {"ends_at": now}
        if subscription.on_trial(now):
            changes["trial_ends_at"] = now
        updated = persist_changes(self.repository, subscription, changes, now)
        logger.info("Subscription %s marked as cancelled", updated.subscription_id)
        return updated

    def _ensure_cancellable(self, subscription: Subscription, now: datetime) -> None:
        if subscription.subscription_id is None:
            raise InvalidState("Subscription has not been persisted yet")
        if not subscription.gateway_subscription_id:
            raise InvalidState(
                "Subscription has no gateway subscription id",
                {"subscription_id": subscription.subscription_id},
            )
        if subscription.ended(now):
            raise InvalidState(
                "Subscription has already ended",
                {"subscription_id": subscription.subscription_id},
            )


__all__ = ["BillingRepository", "SubscriptionService", "persist_changes"]
