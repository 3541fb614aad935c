"""Application wiring for the billing services."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Mapping

from ...gateway import GatewayClient, create_gateway_client, load_gateway_config
from ..billing import (
    AccountBillingService,
    InvoiceComputer,
    PlanDefinition,
    ReconciliationJob,
    SubscriptionService,
    load_plan_catalog,
)
from ..billing.repository import PostgresBillingRepository

logger = logging.getLogger("billing")


@lru_cache(maxsize=1)
def get_gateway_client() -> GatewayClient:
    config = load_gateway_config()
    client = create_gateway_client(config)
    logger.info("Payment gateway configured", extra=client.describe())
    return client


@lru_cache(maxsize=1)
def get_plan_catalog() -> Mapping[str, PlanDefinition]:
    plans = load_plan_catalog()
    logger.info("Loaded %s billing plan(s)", len(plans))
    return plans


@lru_cache(maxsize=1)
def get_billing_repository() -> PostgresBillingRepository:
    return PostgresBillingRepository()


@lru_cache(maxsize=1)
def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(
        repository=get_billing_repository(),
        gateway=get_gateway_client(),
        plans=get_plan_catalog(),
    )


@lru_cache(maxsize=1)
def get_invoice_computer() -> InvoiceComputer:
    return InvoiceComputer(gateway=get_gateway_client(), plans=get_plan_catalog())


@lru_cache(maxsize=1)
def get_account_billing_service() -> AccountBillingService:
    return AccountBillingService(
        repository=get_billing_repository(),
        gateway=get_gateway_client(),
        plans=get_plan_catalog(),
        default_currency=(os.getenv("CASHIER_CURRENCY") or "usd").lower(),
    )


@lru_cache(maxsize=1)
def get_reconciliation_job() -> ReconciliationJob:
    return ReconciliationJob(repository=get_billing_repository(), gateway=get_gateway_client())


def reset_services() -> None:
    """Drop cached wiring, e.g. after the environment changed."""

    for factory in (
        get_gateway_client,
        get_plan_catalog,
        get_billing_repository,
        get_subscription_service,
        get_invoice_computer,
        get_account_billing_service,
        get_reconciliation_job,
    ):
        factory.cache_clear()


__all__ = [
    "get_account_billing_service",
    "get_billing_repository",
    "get_gateway_client",
    "get_invoice_computer",
    "get_plan_catalog",
    "get_reconciliation_job",
    "get_subscription_service",
    "reset_services",
]
