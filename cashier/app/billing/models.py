"""Domain models for the billing system."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...gateway.models import BillTo, GatewaySubscription
from .amounts import format_amount
from .clock import billing_anchor_day, ensure_aware, is_after, utcnow


class SubscriptionState(str, Enum):
    """Lifecycle state derived from a subscription's timestamps."""

    TRIALING = "trialing"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    INACTIVE = "inactive"


def derive_state(
    now: datetime,
    trial_ends_at: Optional[datetime],
    ends_at: Optional[datetime],
) -> SubscriptionState:
    """Map ``(now, trial_ends_at, ends_at)`` to a lifecycle state.

    A running trial wins over everything else, including a cancellation that
    is already scheduled; a subscription without ``ends_at`` is active
    indefinitely; a future ``ends_at`` is a grace period.
    """

    if is_after(trial_ends_at, now):
        return SubscriptionState.TRIALING
    if ends_at is None:
        return SubscriptionState.ACTIVE
    if is_after(ends_at, now):
        return SubscriptionState.GRACE_PERIOD
    return SubscriptionState.INACTIVE


class BillableAccount(BaseModel):
    """A merchant's customer that can own subscriptions."""

    account_id: str
    name: str = ""
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None
    gateway_customer_id: Optional[str] = None
    gateway_payment_profile_id: Optional[str] = None
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    tax_percentage: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()

    @property
    def has_gateway_profile(self) -> bool:
        return bool(self.gateway_customer_id and self.gateway_payment_profile_id)

    @property
    def has_card_on_file(self) -> bool:
        return bool(self.card_brand)

    def on_generic_trial(self, now: Optional[datetime] = None) -> bool:
        """Account-level trial that is not tied to any subscription."""

        return is_after(self.trial_ends_at, now or utcnow())

    def bill_to(self) -> BillTo:
        first_name, _, last_name = self.name.strip().partition(" ")
        return BillTo(
            first_name=first_name,
            last_name=last_name.strip(),
            address=self.address,
            city=self.city,
            state=self.state,
            zip=self.zip,
            country=self.country,
        )


class Subscription(BaseModel):
    """A recurring subscription registered with the gateway.

    Lifecycle is stored as two nullable timestamps and derived on every query;
    see :func:`derive_state`.
    """

    subscription_id: Optional[str] = None
    account_id: str
    name: str = "default"
    plan_id: str
    gateway_subscription_id: str
    gateway_payment_profile_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    trial_ends_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def state(self, now: Optional[datetime] = None) -> SubscriptionState:
        return derive_state(now or utcnow(), self.trial_ends_at, self.ends_at)

    def on_trial(self, now: Optional[datetime] = None) -> bool:
        return is_after(self.trial_ends_at, now or utcnow())

    def on_grace_period(self, now: Optional[datetime] = None) -> bool:
        return is_after(self.ends_at, now or utcnow())

    def active(self, now: Optional[datetime] = None) -> bool:
        return self.ends_at is None or self.on_grace_period(now)

    def valid(self, now: Optional[datetime] = None) -> bool:
        """Active, on trial, or within the grace period."""

        current = now or utcnow()
        return self.active(current) or self.on_trial(current) or self.on_grace_period(current)

    def cancelled(self) -> bool:
        return self.ends_at is not None

    def ended(self, now: Optional[datetime] = None) -> bool:
        return self.ends_at is not None and not self.on_grace_period(now)

    @property
    def billing_anchor_day(self) -> int:
        return billing_anchor_day(self.created_at)

    @property
    def reference_id(self) -> Optional[str]:
        return self.metadata.get("ref_id")


class Invoice(BaseModel):
    """Invoice derived on demand from a subscription; never persisted."""

    invoice_date: datetime
    raw_total: Decimal
    tax: Decimal
    subtotal: Decimal
    tax_percent: Decimal
    currency: str = "usd"
    subscription: Subscription
    gateway_subscription: Optional[GatewaySubscription] = None

    model_config = ConfigDict(frozen=True)

    @property
    def total(self) -> str:
        return format_amount(self.raw_total, self.currency)

    @property
    def formatted_subtotal(self) -> str:
        return format_amount(self.subtotal, self.currency)

    @property
    def formatted_tax(self) -> str:
        return format_amount(self.tax, self.currency)

    def date(self, tz=None) -> datetime:
        moment = ensure_aware(self.invoice_date)
        return moment.astimezone(tz) if tz else moment


__all__ = [
    "BillableAccount",
    "Invoice",
    "Subscription",
    "SubscriptionState",
    "derive_state",
]
