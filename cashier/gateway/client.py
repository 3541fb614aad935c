"""Payment gateway clients used by the billing core."""
from __future__ import annotations

import json
import logging
import os
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

import requests

from ..exceptions import GatewayRejected, GatewayUnavailable, PaymentHeldForReview
from .config import GatewayConfig
from .models import (
    BillTo,
    ChargeReceipt,
    CreditCard,
    CustomerProfile,
    CustomerProfileRequest,
    GatewaySubscription,
    SubscriptionReceipt,
    SubscriptionRequest,
    TransactionDetails,
)

logger = logging.getLogger(__name__)

RESPONSE_APPROVED = "1"
RESPONSE_DECLINED = "2"
RESPONSE_HELD_FOR_REVIEW = "4"


def new_reference_id() -> str:
    """Return a correlation reference accepted by the gateway (max 20 chars)."""

    return f"ref{uuid4().hex[:17]}"


def _money(amount: Decimal) -> str:
    return f"{Decimal(amount):.2f}"


class GatewayClient:
    """Base client for profile, transaction and subscription calls."""

    name = "base"

    def create_customer_profile(self, request: CustomerProfileRequest) -> CustomerProfile:
        raise NotImplementedError

    def update_customer_payment_profile(
        self,
        customer_profile_id: str,
        payment_profile_id: str,
        bill_to: BillTo,
        card: CreditCard,
    ) -> None:
        raise NotImplementedError

    def delete_customer_profile(self, customer_profile_id: str) -> None:
        raise NotImplementedError

    def charge(
        self,
        customer_profile_id: str,
        payment_profile_id: str,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> Optional[ChargeReceipt]:
        """Capture a payment; ``None`` means the card was declined."""

        raise NotImplementedError

    def create_subscription(self, request: SubscriptionRequest) -> SubscriptionReceipt:
        raise NotImplementedError

    def cancel_subscription(self, subscription_id: str) -> None:
        raise NotImplementedError

    def get_subscription_status(self, subscription_id: str) -> GatewaySubscription:
        raise NotImplementedError

    def get_transaction_details(self, transaction_id: str) -> TransactionDetails:
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"gateway_provider": self.name}


def _bill_to_payload(bill_to: BillTo) -> Dict[str, Any]:
    payload = {
        "firstName": bill_to.first_name,
        "lastName": bill_to.last_name,
        "address": bill_to.address,
        "city": bill_to.city,
        "state": bill_to.state,
        "zip": bill_to.zip,
        "country": bill_to.country,
    }
    return {key: value for key, value in payload.items() if value is not None}


def _card_payload(card: CreditCard) -> Dict[str, Any]:
    credit_card: Dict[str, Any] = {"cardNumber": card.number, "expirationDate": card.expiration}
    if card.code:
        credit_card["cardCode"] = card.code
    return {"creditCard": credit_card}


def _interval_payload(unit: str, length: int) -> Dict[str, Any]:
    # The recurring billing API only schedules in days or months.
    unit = unit.lower()
    if unit == "weeks":
        return {"length": length * 7, "unit": "days"}
    if unit == "years":
        return {"length": length * 12, "unit": "months"}
    return {"length": length, "unit": unit}


def _first_message(messages: Dict[str, Any]) -> Tuple[str, str]:
    entries = messages.get("message") or []
    if isinstance(entries, dict):
        entries = [entries]
    if not entries:
        return "unknown", "Gateway returned an error without details"
    first = entries[0]
    return str(first.get("code", "unknown")), str(first.get("text", ""))


def _first_transaction_error(transaction: Dict[str, Any]) -> Tuple[str, str]:
    errors = transaction.get("errors") or []
    if not errors:
        return "unknown", "Transaction failed"
    first = errors[0]
    return str(first.get("errorCode", "unknown")), str(first.get("errorText", ""))


class AuthorizeNetGateway(GatewayClient):
    """Client for the Authorize.net JSON API."""

    name = "authorize"

    def __init__(self, config: GatewayConfig, *, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self._session = session or requests.Session()

    def _execute(self, request_name: str, body: Dict[str, Any], *, check_result: bool = True) -> Dict[str, Any]:
        ref_id = new_reference_id()
        # The API validates element order: credentials first, then refId.
        payload = {
            request_name: {
                "merchantAuthentication": {
                    "name": self.config.api_login_id,
                    "transactionKey": self.config.transaction_key,
                },
                "refId": ref_id,
                **body,
            }
        }
        try:
            response = self._session.post(
                self.config.endpoint,
                json=payload,
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Gateway request %s failed ref=%s: %s", request_name, ref_id, exc)
            raise GatewayUnavailable(f"No response from payment gateway for {request_name}") from exc

        try:
            data = json.loads(response.content.decode("utf-8-sig"))
        except ValueError as exc:
            raise GatewayUnavailable(f"Unreadable gateway response for {request_name}") from exc
        if not isinstance(data, dict) or not data:
            raise GatewayUnavailable(f"Empty gateway response for {request_name}")

        data.setdefault("refId", ref_id)
        if check_result:
            messages = data.get("messages") or {}
            if messages.get("resultCode") != "Ok":
                code, text = _first_message(messages)
                logger.error("Authorize.net Response : %s  %s", code, text, extra={"ref_id": ref_id})
                raise GatewayRejected(code, text)
        return data

    def create_customer_profile(self, request: CustomerProfileRequest) -> CustomerProfile:
        profile: Dict[str, Any] = {"merchantCustomerId": request.merchant_customer_id}
        if request.email:
            profile["email"] = request.email
        profile["paymentProfiles"] = {
            "customerType": "individual",
            "billTo": _bill_to_payload(request.bill_to),
            "payment": _card_payload(request.card),
        }
        data = self._execute("createCustomerProfileRequest", {"profile": profile})
        payment_ids = data.get("customerPaymentProfileIdList") or []
        if not data.get("customerProfileId") or not payment_ids:
            raise GatewayRejected("missing_profile", "Gateway did not return profile identifiers")
        return CustomerProfile(
            customer_profile_id=str(data["customerProfileId"]),
            payment_profile_id=str(payment_ids[0]),
        )

    def update_customer_payment_profile(
        self,
        customer_profile_id: str,
        payment_profile_id: str,
        bill_to: BillTo,
        card: CreditCard,
    ) -> None:
        self._execute(
            "updateCustomerPaymentProfileRequest",
            {
                "customerProfileId": customer_profile_id,
                "paymentProfile": {
                    "billTo": _bill_to_payload(bill_to),
                    "payment": _card_payload(card),
                    "customerPaymentProfileId": payment_profile_id,
                },
            },
        )

    def delete_customer_profile(self, customer_profile_id: str) -> None:
        self._execute("deleteCustomerProfileRequest", {"customerProfileId": customer_profile_id})

    def charge(
        self,
        customer_profile_id: str,
        payment_profile_id: str,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> Optional[ChargeReceipt]:
        data = self._execute(
            "createTransactionRequest",
            {
                "transactionRequest": {
                    "transactionType": "authCaptureTransaction",
                    "amount": _money(amount),
                    "currencyCode": currency.upper(),
                    "profile": {
                        "customerProfileId": customer_profile_id,
                        "paymentProfile": {"paymentProfileId": payment_profile_id},
                    },
                    "order": {"description": description},
                }
            },
            check_result=False,
        )
        transaction = data.get("transactionResponse")
        if not transaction:
            code, text = _first_message(data.get("messages") or {})
            raise GatewayRejected(code, text)

        response_code = str(transaction.get("responseCode", ""))
        if response_code == RESPONSE_APPROVED:
            return ChargeReceipt(
                auth_code=str(transaction.get("authCode", "")),
                transaction_id=str(transaction.get("transId", "")),
            )
        if response_code == RESPONSE_DECLINED:
            logger.info("Charge declined for customer profile %s", customer_profile_id)
            return None
        if response_code == RESPONSE_HELD_FOR_REVIEW:
            raise PaymentHeldForReview(str(transaction.get("transId") or "") or None)
        code, text = _first_transaction_error(transaction)
        raise GatewayRejected(code, text)

    def create_subscription(self, request: SubscriptionRequest) -> SubscriptionReceipt:
        data = self._execute(
            "ARBCreateSubscriptionRequest",
            {
                "subscription": {
                    "name": request.name,
                    "paymentSchedule": {
                        "interval": _interval_payload(request.interval_unit, request.interval_length),
                        "startDate": request.start_date.isoformat(),
                        "totalOccurrences": str(request.total_occurrences),
                        "trialOccurrences": str(request.trial_occurrences),
                    },
                    "amount": _money(request.amount),
                    "trialAmount": _money(request.trial_amount),
                    "profile": {
                        "customerProfileId": request.customer_profile_id,
                        "customerPaymentProfileId": request.payment_profile_id,
                    },
                }
            },
        )
        subscription_id = data.get("subscriptionId")
        if not subscription_id:
            raise GatewayRejected("missing_subscription", "Gateway did not return a subscription id")
        return SubscriptionReceipt(subscription_id=str(subscription_id), ref_id=str(data["refId"]))

    def cancel_subscription(self, subscription_id: str) -> None:
        self._execute("ARBCancelSubscriptionRequest", {"subscriptionId": subscription_id})

    def get_subscription_status(self, subscription_id: str) -> GatewaySubscription:
        data = self._execute("ARBGetSubscriptionRequest", {"subscriptionId": subscription_id})
        subscription = data.get("subscription") or {}
        profile = subscription.get("profile") or {}
        amount = subscription.get("amount")
        return GatewaySubscription(
            subscription_id=subscription_id,
            status=str(subscription.get("status", "")),
            amount=Decimal(str(amount)) if amount is not None else None,
            name=subscription.get("name"),
            description=profile.get("description"),
            customer_profile_id=profile.get("customerProfileId"),
        )

    def get_transaction_details(self, transaction_id: str) -> TransactionDetails:
        data = self._execute("getTransactionDetailsRequest", {"transId": transaction_id})
        transaction = data.get("transaction") or {}
        return TransactionDetails(
            transaction_id=str(transaction.get("transId", transaction_id)),
            amount=Decimal(str(transaction.get("authAmount", "0"))),
            status=str(transaction.get("transactionStatus", "")),
        )

    def describe(self) -> Dict[str, str]:
        return {"gateway_provider": self.name, "gateway_environment": self.config.environment}


class LocalSandboxGateway(GatewayClient):
    """In-process gateway for local development; approves everything."""

    name = "local"

    def __init__(self) -> None:
        self.profiles: Dict[str, CustomerProfileRequest] = {}
        self.subscriptions: Dict[str, GatewaySubscription] = {}
        self.transactions: Dict[str, TransactionDetails] = {}
        self._sequence = 0

    def _next_id(self) -> str:
        self._sequence += 1
        return str(self._sequence)

    def create_customer_profile(self, request: CustomerProfileRequest) -> CustomerProfile:
        profile_id = self._next_id()
        self.profiles[profile_id] = request
        return CustomerProfile(customer_profile_id=profile_id, payment_profile_id=self._next_id())

    def update_customer_payment_profile(
        self,
        customer_profile_id: str,
        payment_profile_id: str,
        bill_to: BillTo,
        card: CreditCard,
    ) -> None:
        existing = self.profiles.get(customer_profile_id)
        if existing is None:
            raise GatewayRejected("E00040", "The record cannot be found.")
        self.profiles[customer_profile_id] = existing.model_copy(update={"bill_to": bill_to, "card": card})

    def delete_customer_profile(self, customer_profile_id: str) -> None:
        if self.profiles.pop(customer_profile_id, None) is None:
            raise GatewayRejected("E00040", "The record cannot be found.")

    def charge(
        self,
        customer_profile_id: str,
        payment_profile_id: str,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> Optional[ChargeReceipt]:
        if customer_profile_id not in self.profiles:
            raise GatewayRejected("E00040", "The record cannot be found.")
        transaction_id = self._next_id()
        self.transactions[transaction_id] = TransactionDetails(
            transaction_id=transaction_id,
            amount=Decimal(amount),
            status="capturedPendingSettlement",
        )
        logger.info(
            "Local sandbox charge",
            extra={"transaction_id": transaction_id, "amount": _money(amount), "description": description},
        )
        return ChargeReceipt(auth_code=f"LOCAL{transaction_id}", transaction_id=transaction_id)

    def create_subscription(self, request: SubscriptionRequest) -> SubscriptionReceipt:
        subscription_id = self._next_id()
        self.subscriptions[subscription_id] = GatewaySubscription(
            subscription_id=subscription_id,
            status="active",
            amount=request.amount,
            name=request.name,
            customer_profile_id=request.customer_profile_id,
        )
        return SubscriptionReceipt(subscription_id=subscription_id, ref_id=new_reference_id())

    def cancel_subscription(self, subscription_id: str) -> None:
        self.set_status(subscription_id, "canceled")

    def get_subscription_status(self, subscription_id: str) -> GatewaySubscription:
        try:
            return self.subscriptions[subscription_id]
        except KeyError:
            raise GatewayRejected("E00035", "The subscription cannot be found.") from None

    def get_transaction_details(self, transaction_id: str) -> TransactionDetails:
        try:
            return self.transactions[transaction_id]
        except KeyError:
            raise GatewayRejected("E00040", "The record cannot be found.") from None

    def set_status(self, subscription_id: str, status: str) -> GatewaySubscription:
        """Force a gateway-side status, e.g. to simulate a suspension."""

        current = self.get_subscription_status(subscription_id)
        updated = current.model_copy(update={"status": status.lower()})
        self.subscriptions[subscription_id] = updated
        return updated


def _attach_log_file(path: str) -> None:
    gateway_logger = logging.getLogger("cashier.gateway")
    target = os.path.abspath(path)
    for handler in gateway_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return
    handler = logging.FileHandler(target)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    gateway_logger.addHandler(handler)
    logger.debug("Gateway log file attached", extra={"gateway_log": target})


def create_gateway_client(config: GatewayConfig) -> GatewayClient:
    if config.log_path:
        _attach_log_file(config.log_path)
    provider = (config.provider_name or "authorize").strip().lower()
    if provider == "local":
        return LocalSandboxGateway()
    return AuthorizeNetGateway(config)


__all__ = [
    "AuthorizeNetGateway",
    "GatewayClient",
    "LocalSandboxGateway",
    "create_gateway_client",
    "new_reference_id",
]
