"""Tests for registering new subscriptions through the builder."""
from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from cashier.app.billing import BillableAccount, SubscriptionBuilder, SubscriptionService
from cashier.exceptions import AccountNotRegistered, GatewayRejected, GatewayUnavailable, UnknownPlan
from cashier.gateway import LocalSandboxGateway

from .fakes import CREATED_AT


class RecordingGateway(LocalSandboxGateway):
    def __init__(self) -> None:
        super().__init__()
        self.requests = []

    def create_subscription(self, request):
        self.requests.append(request)
        return super().create_subscription(request)


class RejectingGateway(RecordingGateway):
    def create_subscription(self, request):
        self.requests.append(request)
        raise GatewayRejected("E00012", "A duplicate subscription already exists.")


class UnreachableGateway(RecordingGateway):
    def create_subscription(self, request):
        self.requests.append(request)
        raise GatewayUnavailable()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


def _builder(account, plan_id, *, repository, gateway, plans, clock, name="default"):
    return SubscriptionBuilder(
        account,
        name,
        plan_id,
        repository=repository,
        gateway=gateway,
        plans=plans,
        clock=clock,
    )


def test_create_registers_with_gateway_and_persists(account, repository, gateway, plans, clock):
    subscription = _builder(account, "monthly-10-1", repository=repository, gateway=gateway, plans=plans, clock=clock).create()

    assert subscription.subscription_id in repository.subscriptions
    assert subscription.trial_ends_at is None
    assert subscription.ends_at is None
    assert subscription.version == 0
    assert subscription.created_at == CREATED_AT
    assert subscription.gateway_subscription_id in gateway.subscriptions
    assert subscription.gateway_payment_profile_id == account.gateway_payment_profile_id
    assert subscription.reference_id

    request = gateway.requests[0]
    assert request.name == "main"
    assert request.interval_unit == "months"
    assert request.interval_length == 1
    assert request.amount == Decimal("9.99")
    assert request.start_date == date(2026, 1, 5)
    assert request.total_occurrences == 9999
    assert request.customer_profile_id == account.gateway_customer_id


def test_end_to_end_monthly_plan(account, repository, gateway, plans, clock):
    subscription = _builder(account, "monthly-10-1", repository=repository, gateway=gateway, plans=plans, clock=clock).add()

    assert subscription.valid(clock())

    clock.advance(days=31)
    service = SubscriptionService(repository=repository, gateway=gateway, plans=plans, clock=clock)
    assert subscription.valid(clock())
    assert service.billing_days(subscription) == 31


def test_amount_includes_account_tax(account, repository, gateway, plans, clock):
    taxed = account.model_copy(update={"tax_percentage": Decimal("8")})

    _builder(taxed, "monthly-10-1", repository=repository, gateway=gateway, plans=plans, clock=clock).create()

    assert gateway.requests[0].amount == Decimal("10.79")


def test_plan_trial_days_set_trial_end_and_shift_start(account, repository, gateway, plans, clock):
    subscription = _builder(account, "monthly-trial", repository=repository, gateway=gateway, plans=plans, clock=clock).create()

    assert subscription.trial_ends_at == CREATED_AT + timedelta(days=14)
    assert subscription.on_trial(clock())
    assert gateway.requests[0].start_date == date(2026, 1, 19)


def test_skip_trial_always_clears_trial_end(account, repository, gateway, plans, clock):
    subscription = (
        _builder(account, "monthly-trial", repository=repository, gateway=gateway, plans=plans, clock=clock)
        .trial_days(30)
        .skip_trial()
        .create()
    )

    assert subscription.trial_ends_at is None


def test_explicit_trial_override_wins_over_plan(account, repository, gateway, plans, clock):
    builder = _builder(account, "monthly-trial", repository=repository, gateway=gateway, plans=plans, clock=clock)

    subscription = builder.trial_days(3).create()
    assert subscription.trial_ends_at == CREATED_AT + timedelta(days=3)

    no_trial = _builder(
        account, "monthly-trial", repository=repository, gateway=gateway, plans=plans, clock=clock, name="secondary"
    ).trial_days(0).create()
    assert no_trial.trial_ends_at is None


def test_coupon_metadata_and_quantity_are_stored(account, repository, gateway, plans, clock):
    subscription = (
        _builder(account, "weekly-3", repository=repository, gateway=gateway, plans=plans, clock=clock)
        .quantity(3)
        .with_coupon("WELCOME")
        .with_metadata({"source": "signup", "seats": 3})
        .create()
    )

    assert subscription.quantity == 3
    assert subscription.metadata["coupon"] == "WELCOME"
    assert subscription.metadata["seats"] == "3"
    assert subscription.metadata["ref_id"] == subscription.reference_id
    assert gateway.requests[0].interval_unit == "weeks"
    assert gateway.requests[0].interval_length == 3


def test_builder_validates_options(account, repository, gateway, plans, clock):
    builder = _builder(account, "monthly-10-1", repository=repository, gateway=gateway, plans=plans, clock=clock)

    with pytest.raises(ValueError):
        builder.quantity(0)
    with pytest.raises(ValueError):
        builder.trial_days(-1)


def test_unknown_plan_persists_nothing(account, repository, gateway, plans, clock):
    with pytest.raises(UnknownPlan):
        _builder(account, "gold", repository=repository, gateway=gateway, plans=plans, clock=clock).create()

    assert repository.subscriptions == {}
    assert gateway.requests == []


def test_unregistered_account_is_rejected(repository, gateway, plans, clock):
    account = BillableAccount(account_id="acct_2", name="No Profile")

    with pytest.raises(AccountNotRegistered):
        _builder(account, "monthly-10-1", repository=repository, gateway=gateway, plans=plans, clock=clock).create()

    assert repository.subscriptions == {}
    assert gateway.requests == []


def test_gateway_rejection_persists_nothing(account, repository, plans, clock):
    rejecting = RejectingGateway()

    with pytest.raises(GatewayRejected) as excinfo:
        _builder(account, "monthly-10-1", repository=repository, gateway=rejecting, plans=plans, clock=clock).create()

    assert excinfo.value.gateway_code == "E00012"
    assert repository.subscriptions == {}


def test_unreachable_gateway_persists_nothing(account, repository, plans, clock):
    unreachable = UnreachableGateway()

    with pytest.raises(GatewayUnavailable):
        _builder(account, "monthly-10-1", repository=repository, gateway=unreachable, plans=plans, clock=clock).create()

    assert len(unreachable.requests) == 1
    assert repository.subscriptions == {}
    assert repository.saves == []
