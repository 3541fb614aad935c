"""Error kinds raised by the billing core and the gateway transport."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass(eq=False)
class BillingError(Exception):
    """Base class for billing failures surfaced to callers."""

    code: str
    message: str
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for logs and API responses."""

        return self._payload


class UnknownPlan(BillingError):
    """The requested plan identifier is not in the plan catalog."""

    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        super().__init__("unknown_plan", f"Unknown plan: {plan_id}", {"plan_id": plan_id})


class AccountNotRegistered(BillingError):
    """The account has no customer profile on file with the gateway."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(
            "account_not_registered",
            f"Account {account_id} has no gateway customer profile",
            {"account_id": account_id},
        )


class GatewayRejected(BillingError):
    """The gateway answered with a structured non-success result."""

    def __init__(self, gateway_code: str, gateway_message: str) -> None:
        self.gateway_code = gateway_code
        self.gateway_message = gateway_message
        super().__init__(
            "gateway_rejected",
            f"Response : {gateway_code}  {gateway_message}",
            {"gateway_code": gateway_code, "gateway_message": gateway_message},
        )


class GatewayUnavailable(BillingError):
    """No usable response was received from the gateway."""

    def __init__(self, reason: str = "No response from payment gateway") -> None:
        super().__init__("gateway_unavailable", reason)


class PaymentHeldForReview(BillingError):
    """The gateway accepted a charge but holds it for manual merchant review."""

    def __init__(self, transaction_id: Optional[str] = None) -> None:
        self.transaction_id = transaction_id
        super().__init__(
            "held_for_review",
            "Payment held for review",
            {"transaction_id": transaction_id} if transaction_id else None,
        )


class InvalidState(BillingError):
    """The record cannot undergo the requested operation in its current state."""

    def __init__(self, message: str, detail: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__("invalid_state", message, detail)


class ConcurrentModification(InvalidState):
    """Another writer updated the subscription since it was read."""

    def __init__(self, subscription_id: str, expected_version: int) -> None:
        self.subscription_id = subscription_id
        self.expected_version = expected_version
        super().__init__(
            f"Subscription {subscription_id} was modified concurrently",
            {"subscription_id": subscription_id, "expected_version": expected_version},
        )


__all__ = [
    "AccountNotRegistered",
    "BillingError",
    "ConcurrentModification",
    "GatewayRejected",
    "GatewayUnavailable",
    "InvalidState",
    "PaymentHeldForReview",
    "UnknownPlan",
]
