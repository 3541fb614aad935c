"""Tests for the Authorize.net transport and gateway configuration."""
from __future__ import annotations

import json
import logging
from datetime import date
from decimal import Decimal

import pytest
import requests

from cashier.exceptions import GatewayRejected, GatewayUnavailable, PaymentHeldForReview
from cashier.gateway import (
    AuthorizeNetGateway,
    BillTo,
    CreditCard,
    CustomerProfileRequest,
    LocalSandboxGateway,
    SubscriptionRequest,
    create_gateway_client,
    load_gateway_config,
    new_reference_id,
)
from cashier.gateway.config import PRODUCTION_ENDPOINT, SANDBOX_ENDPOINT

OK = {"resultCode": "Ok", "message": [{"code": "I00001", "text": "Successful."}]}


class StubResponse:
    def __init__(self, body, status_code: int = 200) -> None:
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode("utf-8")
        self.content = body
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")


class StubSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def config():
    return load_gateway_config(
        {
            "AUTHORIZE_API_LOGIN_ID": "login",
            "AUTHORIZE_TRANSACTION_KEY": "secret",
            "GATEWAY_TIMEOUT": "12",
        }
    )


def _gateway(config, *responses):
    session = StubSession(*responses)
    return AuthorizeNetGateway(config, session=session), session


def _profile_request() -> CustomerProfileRequest:
    return CustomerProfileRequest(
        merchant_customer_id="M_acct_1",
        email="ada@example.com",
        bill_to=BillTo(first_name="Ada", last_name="Lovelace", zip="80202"),
        card=CreditCard(number="4111-1111-1111-1111", expiration="2030-12", code="123"),
    )


def _subscription_request(unit: str, length: int) -> SubscriptionRequest:
    return SubscriptionRequest(
        name="main",
        interval_unit=unit,
        interval_length=length,
        start_date=date(2026, 1, 5),
        total_occurrences=9999,
        amount=Decimal("10.79"),
        customer_profile_id="10",
        payment_profile_id="20",
    )


def test_requests_lead_with_credentials_then_reference(config):
    body = b"\xef\xbb\xbf" + json.dumps(
        {"customerProfileId": "10", "customerPaymentProfileIdList": ["20"], "messages": OK}
    ).encode("utf-8")
    gateway, session = _gateway(config, StubResponse(body))

    profile = gateway.create_customer_profile(_profile_request())

    assert profile.customer_profile_id == "10"
    assert profile.payment_profile_id == "20"
    call = session.calls[0]
    assert call["url"] == SANDBOX_ENDPOINT
    assert call["timeout"] == 12.0
    request = call["json"]["createCustomerProfileRequest"]
    assert list(request)[:3] == ["merchantAuthentication", "refId", "profile"]
    assert request["merchantAuthentication"] == {"name": "login", "transactionKey": "secret"}
    assert len(request["refId"]) <= 20
    payment = request["profile"]["paymentProfiles"]["payment"]["creditCard"]
    assert payment["cardNumber"] == "4111111111111111"
    assert "address" not in request["profile"]["paymentProfiles"]["billTo"]


def test_error_result_raises_gateway_rejected(config, caplog):
    error = {"resultCode": "Error", "message": [{"code": "E00039", "text": "A duplicate record already exists."}]}
    gateway, _ = _gateway(config, StubResponse({"messages": error}))

    with caplog.at_level(logging.ERROR, logger="cashier.gateway.client"):
        with pytest.raises(GatewayRejected) as excinfo:
            gateway.delete_customer_profile("10")

    assert excinfo.value.gateway_code == "E00039"
    assert str(excinfo.value) == "Response : E00039  A duplicate record already exists."
    assert "Authorize.net Response : E00039" in caplog.text


@pytest.mark.parametrize(
    "response",
    [
        requests.ConnectionError("connection refused"),
        StubResponse(b"", status_code=200),
        StubResponse(b"<html>", status_code=200),
        StubResponse({"messages": OK}, status_code=503),
    ],
)
def test_transport_failures_raise_gateway_unavailable(config, response):
    gateway, _ = _gateway(config, response)

    with pytest.raises(GatewayUnavailable):
        gateway.cancel_subscription("30")


def test_charge_outcomes(config):
    approved = {"transactionResponse": {"responseCode": "1", "authCode": "ABC123", "transId": "900"}, "messages": OK}
    declined = {"transactionResponse": {"responseCode": "2", "transId": "901"}, "messages": OK}
    held = {"transactionResponse": {"responseCode": "4", "transId": "902"}, "messages": OK}
    failed = {
        "transactionResponse": {"responseCode": "3", "errors": [{"errorCode": "11", "errorText": "Duplicate."}]},
        "messages": {"resultCode": "Error", "message": [{"code": "E00027", "text": "Failed."}]},
    }
    gateway, session = _gateway(
        config,
        StubResponse(approved),
        StubResponse(declined),
        StubResponse(held),
        StubResponse(failed),
    )

    receipt = gateway.charge("10", "20", Decimal("10.789"), "usd", "One-off")
    assert receipt.auth_code == "ABC123"
    assert receipt.transaction_id == "900"
    transaction = session.calls[0]["json"]["createTransactionRequest"]["transactionRequest"]
    assert transaction["amount"] == "10.79"
    assert transaction["currencyCode"] == "USD"

    assert gateway.charge("10", "20", Decimal("5"), "usd", "Declined") is None

    with pytest.raises(PaymentHeldForReview) as excinfo:
        gateway.charge("10", "20", Decimal("5"), "usd", "Review")
    assert excinfo.value.transaction_id == "902"

    with pytest.raises(GatewayRejected) as rejected:
        gateway.charge("10", "20", Decimal("5"), "usd", "Failed")
    assert rejected.value.gateway_code == "11"


@pytest.mark.parametrize(
    ("unit", "length", "expected"),
    [
        ("months", 1, {"length": 1, "unit": "months"}),
        ("days", 10, {"length": 10, "unit": "days"}),
        ("weeks", 3, {"length": 21, "unit": "days"}),
        ("years", 1, {"length": 12, "unit": "months"}),
    ],
)
def test_create_subscription_interval_translation(config, unit, length, expected):
    gateway, session = _gateway(config, StubResponse({"subscriptionId": "30", "messages": OK}))

    receipt = gateway.create_subscription(_subscription_request(unit, length))

    request = session.calls[0]["json"]["ARBCreateSubscriptionRequest"]
    schedule = request["subscription"]["paymentSchedule"]
    assert schedule["interval"] == expected
    assert schedule["startDate"] == "2026-01-05"
    assert schedule["totalOccurrences"] == "9999"
    assert request["subscription"]["amount"] == "10.79"
    assert receipt.subscription_id == "30"
    assert receipt.ref_id == request["refId"]


def test_subscription_status_is_normalized(config):
    payload = {
        "subscription": {
            "name": "main",
            "amount": 9.99,
            "status": "Suspended",
            "profile": {"description": "Ada", "customerProfileId": "10"},
        },
        "messages": OK,
    }
    gateway, _ = _gateway(config, StubResponse(payload))

    status = gateway.get_subscription_status("30")

    assert status.status == "suspended"
    assert status.is_terminated is True
    assert status.amount == Decimal("9.99")
    assert status.customer_profile_id == "10"


def test_transaction_details(config):
    payload = {"transaction": {"transId": "900", "authAmount": "10.79", "transactionStatus": "settledSuccessfully"}, "messages": OK}
    gateway, _ = _gateway(config, StubResponse(payload))

    details = gateway.get_transaction_details("900")

    assert details.amount == Decimal("10.79")
    assert details.status == "settledSuccessfully"


def test_load_gateway_config_defaults_and_validation():
    config = load_gateway_config({})
    assert config.provider_name == "authorize"
    assert config.environment == "sandbox"
    assert config.timeout_seconds == 30.0
    assert config.log_path is None

    production = load_gateway_config({"AUTHORIZE_ENV": "Production", "GATEWAY_TIMEOUT": "0"})
    assert production.endpoint == PRODUCTION_ENDPOINT
    assert production.is_production is True
    assert production.timeout_seconds == 1.0

    with pytest.raises(ValueError):
        load_gateway_config({"AUTHORIZE_ENV": "staging"})
    with pytest.raises(ValueError):
        load_gateway_config({"GATEWAY_TIMEOUT": "soon"})


def test_create_gateway_client_selects_provider_and_attaches_log(tmp_path):
    log_path = tmp_path / "gateway.log"
    gateway_logger = logging.getLogger("cashier.gateway")
    before = list(gateway_logger.handlers)
    try:
        local = create_gateway_client(load_gateway_config({"GATEWAY_PROVIDER": "local", "AUTHORIZE_LOG": str(log_path)}))
        again = create_gateway_client(load_gateway_config({"AUTHORIZE_LOG": str(log_path)}))

        assert isinstance(local, LocalSandboxGateway)
        assert isinstance(again, AuthorizeNetGateway)
        assert again.describe() == {"gateway_provider": "authorize", "gateway_environment": "sandbox"}
        assert len(gateway_logger.handlers) == len(before) + 1
    finally:
        for handler in gateway_logger.handlers[len(before):]:
            gateway_logger.removeHandler(handler)
            handler.close()


def test_reference_ids_are_unique_and_short():
    first, second = new_reference_id(), new_reference_id()

    assert first != second
    assert len(first) <= 20


def test_credit_card_validation():
    with pytest.raises(ValueError):
        CreditCard(number="1234", expiration="2030-12")
    with pytest.raises(ValueError):
        CreditCard(number="4111111111111111", expiration="12/30")
