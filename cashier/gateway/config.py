"""Payment gateway configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os

SANDBOX_ENDPOINT = "https://apitest.authorize.net/xml/v1/request.api"
PRODUCTION_ENDPOINT = "https://api.authorize.net/xml/v1/request.api"

_ENVIRONMENTS = {"sandbox": SANDBOX_ENDPOINT, "production": PRODUCTION_ENDPOINT}


@dataclass(frozen=True)
class GatewayConfig:
    """Merchant credentials and transport settings for the payment gateway."""

    provider_name: str
    api_login_id: str
    transaction_key: str
    environment: str
    log_path: Optional[str]
    timeout_seconds: float

    def __post_init__(self) -> None:
        if self.environment not in _ENVIRONMENTS:
            raise ValueError(f"Unsupported gateway environment: {self.environment!r}")

    @property
    def endpoint(self) -> str:
        return _ENVIRONMENTS[self.environment]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_gateway_config(env: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    """Load :class:`GatewayConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    provider_name = (env_mapping.get("GATEWAY_PROVIDER") or "authorize").strip().lower() or "authorize"
    environment = (env_mapping.get("AUTHORIZE_ENV") or "sandbox").strip().lower() or "sandbox"
    timeout_seconds = max(1.0, _to_float(env_mapping.get("GATEWAY_TIMEOUT"), default=30.0))

    return GatewayConfig(
        provider_name=provider_name,
        api_login_id=env_mapping.get("AUTHORIZE_API_LOGIN_ID", ""),
        transaction_key=env_mapping.get("AUTHORIZE_TRANSACTION_KEY", ""),
        environment=environment,
        log_path=env_mapping.get("AUTHORIZE_LOG") or None,
        timeout_seconds=timeout_seconds,
    )


__all__ = [
    "GatewayConfig",
    "PRODUCTION_ENDPOINT",
    "SANDBOX_ENDPOINT",
    "load_gateway_config",
]
