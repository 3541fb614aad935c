"""Payment gateway integration: configuration, models and clients."""

from .client import (
    AuthorizeNetGateway,
    GatewayClient,
    LocalSandboxGateway,
    create_gateway_client,
    new_reference_id,
)
from .config import GatewayConfig, load_gateway_config
from .models import (
    BillTo,
    ChargeReceipt,
    CreditCard,
    CustomerProfile,
    CustomerProfileRequest,
    GatewaySubscription,
    SubscriptionReceipt,
    SubscriptionRequest,
    TERMINAL_STATUSES,
    TransactionDetails,
)

__all__ = [
    "AuthorizeNetGateway",
    "BillTo",
    "ChargeReceipt",
    "CreditCard",
    "CustomerProfile",
    "CustomerProfileRequest",
    "GatewayClient",
    "GatewayConfig",
    "GatewaySubscription",
    "LocalSandboxGateway",
    "SubscriptionReceipt",
    "SubscriptionRequest",
    "TERMINAL_STATUSES",
    "TransactionDetails",
    "create_gateway_client",
    "load_gateway_config",
    "new_reference_id",
]
