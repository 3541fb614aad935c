"""Shared pytest fixtures for the billing tests."""
from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType

import pytest

from cashier.app.billing import (
    PLAN_CATALOG,
    AccountBillingService,
    BillableAccount,
    BillingInterval,
    IntervalUnit,
    PlanDefinition,
)
from cashier.gateway import CreditCard, LocalSandboxGateway

from .fakes import CREATED_AT, FixedClock, InMemoryBillingRepository


@pytest.fixture
def repository() -> InMemoryBillingRepository:
    return InMemoryBillingRepository()


@pytest.fixture
def gateway() -> LocalSandboxGateway:
    return LocalSandboxGateway()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(CREATED_AT)


@pytest.fixture
def plans():
    return MappingProxyType(
        {
            **PLAN_CATALOG,
            "monthly-trial": PlanDefinition(
                key="monthly-trial",
                display_name="main with trial",
                interval=BillingInterval(IntervalUnit.MONTHS, 1),
                amount=Decimal("9.99"),
                trial_days=14,
            ),
            "weekly-3": PlanDefinition(
                key="weekly-3",
                display_name="every three weeks",
                interval=BillingInterval(IntervalUnit.WEEKS, 3),
                amount=Decimal("4.50"),
            ),
        }
    )


@pytest.fixture
def card() -> CreditCard:
    return CreditCard(number="4111 1111 1111 1111", expiration="2030-12", code="123")


@pytest.fixture
def account(repository, gateway, card) -> BillableAccount:
    """Account already registered with the sandbox gateway."""

    unregistered = BillableAccount(
        account_id="acct_1",
        name="Ada Lovelace",
        email="ada@example.com",
        address="1 Analytical Way",
        city="Denver",
        state="CO",
        zip="80202",
        country="US",
    )
    return AccountBillingService(repository=repository, gateway=gateway).create_as_customer(unregistered, card)
