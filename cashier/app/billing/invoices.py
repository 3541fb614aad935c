"""Invoice computation for upcoming and past billing cycles."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Mapping, Optional

from ...gateway.client import GatewayClient
from ...gateway.models import GatewaySubscription
from .amounts import quantize_money, tax_portion
from .catalog import PLAN_CATALOG, PlanDefinition, get_plan_definition
from .clock import Clock, add_months, anchored_billing_date, ensure_aware, utcnow, whole_months_between
from .models import BillableAccount, Invoice, Subscription


@dataclass
class InvoiceComputer:
    """Derives invoices from a subscription, its plan and the account's tax rate.

    The gateway-registered amount already includes tax, so ``subtotal`` is
    backed out of ``raw_total`` for display only. Without a reported amount
    the configured plan amount stands in.
    """

    gateway: Optional[GatewayClient] = None
    plans: Mapping[str, PlanDefinition] = field(default_factory=lambda: PLAN_CATALOG)
    clock: Clock = utcnow

    def _now(self) -> datetime:
        return ensure_aware(self.clock())

    def build_invoice(
        self,
        subscription: Subscription,
        account: BillableAccount,
        invoice_date: datetime,
        gateway_subscription: Optional[GatewaySubscription] = None,
    ) -> Invoice:
        if gateway_subscription is not None and gateway_subscription.amount is not None:
            raw_total = quantize_money(gateway_subscription.amount)
        else:
            plan = get_plan_definition(subscription.plan_id, self.plans)
            raw_total = quantize_money(plan.amount)
        tax = tax_portion(raw_total, account.tax_percentage)
        return Invoice(
            invoice_date=invoice_date,
            raw_total=raw_total,
            tax=tax,
            subtotal=raw_total - tax,
            tax_percent=account.tax_percentage,
            currency=account.currency,
            subscription=subscription,
            gateway_subscription=gateway_subscription,
        )

    def next_billing_date(self, subscription: Subscription, now: Optional[datetime] = None) -> datetime:
        current = now or self._now()
        this_month = anchored_billing_date(subscription.billing_anchor_day, current)
        if this_month > current:
            return this_month
        return anchored_billing_date(subscription.billing_anchor_day, current, months_ahead=1)

    def _gateway_status(self, subscription: Subscription) -> Optional[GatewaySubscription]:
        if self.gateway is None:
            return None
        return self.gateway.get_subscription_status(subscription.gateway_subscription_id)

    def upcoming_invoice(self, subscription: Subscription, account: BillableAccount) -> Invoice:
        return self.build_invoice(
            subscription,
            account,
            self.next_billing_date(subscription),
            self._gateway_status(subscription),
        )

    def invoices(
        self,
        subscription: Subscription,
        account: BillableAccount,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Invoice]:
        """One invoice per whole month elapsed since the subscription started.

        Every invoice carries the gateway's *current* status, not a snapshot
        from its billing date.
        """

        end = ensure_aware(until) if until else self._now()
        elapsed = whole_months_between(subscription.created_at, end)
        if elapsed < 1:
            return []

        gateway_subscription = self._gateway_status(subscription)
        created_at = ensure_aware(subscription.created_at)
        dates = [add_months(created_at, number) for number in range(1, elapsed + 1)]
        if since is not None:
            dates = [moment for moment in dates if moment >= ensure_aware(since)]
        return [
            self.build_invoice(subscription, account, moment, gateway_subscription)
            for moment in dates
        ]


__all__ = ["InvoiceComputer"]
