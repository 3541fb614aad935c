"""Request and result models exchanged with the payment gateway."""
from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# "canceled" is the spelling the gateway itself reports.
TERMINAL_STATUSES = frozenset({"expired", "suspended", "cancelled", "canceled", "terminated"})

_EXPIRATION_PATTERN = re.compile(r"^\d{4}-\d{2}$")


class CreditCard(BaseModel):
    """Card details forwarded to the gateway; never persisted locally."""

    number: str
    expiration: str = Field(description="Expiration date formatted as YYYY-MM")
    code: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("number")
    @classmethod
    def _digits_only(cls, value: str) -> str:
        digits = re.sub(r"[^\d]", "", value)
        if not 12 <= len(digits) <= 19:
            raise ValueError("card number must contain 12 to 19 digits")
        return digits

    @field_validator("expiration")
    @classmethod
    def _check_expiration(cls, value: str) -> str:
        if not _EXPIRATION_PATTERN.match(value):
            raise ValueError("expiration must be formatted as YYYY-MM")
        return value

    @property
    def last_four(self) -> str:
        return self.number[-4:]


class BillTo(BaseModel):
    first_name: str = ""
    last_name: str = ""
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class CustomerProfileRequest(BaseModel):
    """Payload for registering a customer profile with one payment profile."""

    merchant_customer_id: str
    email: Optional[str] = None
    bill_to: BillTo
    card: CreditCard

    model_config = ConfigDict(frozen=True)


class CustomerProfile(BaseModel):
    customer_profile_id: str
    payment_profile_id: str

    model_config = ConfigDict(frozen=True)


class ChargeReceipt(BaseModel):
    auth_code: str
    transaction_id: str

    model_config = ConfigDict(frozen=True)


class SubscriptionRequest(BaseModel):
    """Recurring billing schedule registered with the gateway."""

    name: str
    interval_unit: str
    interval_length: int = Field(ge=1)
    start_date: date
    total_occurrences: int = Field(ge=1)
    trial_occurrences: int = Field(default=0, ge=0)
    amount: Decimal = Field(ge=0)
    trial_amount: Decimal = Field(default=Decimal("0"), ge=0)
    customer_profile_id: str
    payment_profile_id: str

    model_config = ConfigDict(frozen=True)


class SubscriptionReceipt(BaseModel):
    subscription_id: str
    ref_id: str

    model_config = ConfigDict(frozen=True)


class GatewaySubscription(BaseModel):
    """Authoritative subscription status as reported by the gateway."""

    subscription_id: str
    status: str
    amount: Optional[Decimal] = None
    name: Optional[str] = None
    description: Optional[str] = None
    customer_profile_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("status")
    @classmethod
    def _normalize_status(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def is_terminated(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TransactionDetails(BaseModel):
    transaction_id: str
    amount: Decimal
    status: str

    model_config = ConfigDict(frozen=True)


__all__ = [
    "BillTo",
    "ChargeReceipt",
    "CreditCard",
    "CustomerProfile",
    "CustomerProfileRequest",
    "GatewaySubscription",
    "SubscriptionReceipt",
    "SubscriptionRequest",
    "TERMINAL_STATUSES",
    "TransactionDetails",
]
