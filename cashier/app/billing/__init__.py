"""Billing domain package: plans, subscriptions, invoices and reconciliation."""

from .accounts import AccountBillingService, detect_card_brand
from .builder import SubscriptionBuilder
from .catalog import (
    PLAN_CATALOG,
    BillingInterval,
    PlanDefinition,
    get_plan_definition,
    load_plan_catalog,
)
from .clock import CANONICAL_TIMEZONE, IntervalUnit, billing_days
from .invoices import InvoiceComputer
from .models import (
    BillableAccount,
    Invoice,
    Subscription,
    SubscriptionState,
    derive_state,
)
from .reconciliation import (
    ReconciliationJob,
    ReconciliationOutcome,
    ReconciliationSummary,
)
from .subscriptions import BillingRepository, SubscriptionService

__all__ = [
    "AccountBillingService",
    "BillableAccount",
    "BillingInterval",
    "BillingRepository",
    "CANONICAL_TIMEZONE",
    "IntervalUnit",
    "Invoice",
    "InvoiceComputer",
    "PLAN_CATALOG",
    "PlanDefinition",
    "ReconciliationJob",
    "ReconciliationOutcome",
    "ReconciliationSummary",
    "Subscription",
    "SubscriptionBuilder",
    "SubscriptionService",
    "SubscriptionState",
    "billing_days",
    "derive_state",
    "detect_card_brand",
    "get_plan_definition",
    "load_plan_catalog",
]
