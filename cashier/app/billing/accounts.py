"""Account-level billing: gateway profiles, one-off charges and subscription queries."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Union

from ...exceptions import AccountNotRegistered, GatewayRejected
from ...gateway.client import GatewayClient
from ...gateway.models import ChargeReceipt, CreditCard, CustomerProfileRequest, TransactionDetails
from .amounts import Number, amount_with_tax
from .builder import SubscriptionBuilder
from .catalog import PLAN_CATALOG, PlanDefinition
from .clock import Clock, ensure_aware, utcnow
from .invoices import InvoiceComputer
from .models import BillableAccount, Invoice, Subscription
from .subscriptions import BillingRepository

logger = logging.getLogger(__name__)

_CARD_BRANDS = (
    ("American Express", re.compile(r"^3[47][0-9]{13}$")),
    ("Diners Club", re.compile(r"^3(?:0[0-5]|[68][0-9])[0-9]{11}$")),
    ("Discover", re.compile(r"^6(?:011|5[0-9][0-9])[0-9]{12}$")),
    ("JCB", re.compile(r"^(?:2131|1800|35\d{3})\d{11}$")),
    ("MasterCard", re.compile(r"^5[1-5][0-9]{14}$")),
    ("Visa", re.compile(r"^4[0-9]{12}(?:[0-9]{3})?$")),
)


def detect_card_brand(number: str) -> str:
    """Guess the card brand from its number; the gateway does not report it."""

    digits = re.sub(r"[^\d]", "", number)
    for brand, pattern in _CARD_BRANDS:
        if pattern.match(digits):
            return brand
    return "Unknown"


@dataclass
class AccountBillingService:
    """Billing operations scoped to one customer account."""

    repository: BillingRepository
    gateway: GatewayClient
    plans: Mapping[str, PlanDefinition] = field(default_factory=lambda: PLAN_CATALOG)
    default_currency: str = "usd"
    clock: Clock = utcnow

    def _now(self) -> datetime:
        return ensure_aware(self.clock())

    def _require_profile(self, account: BillableAccount) -> None:
        if not account.has_gateway_profile:
            raise AccountNotRegistered(account.account_id)

    def _invoice_computer(self) -> InvoiceComputer:
        return InvoiceComputer(gateway=self.gateway, plans=self.plans, clock=self.clock)

    # Gateway customer profile -------------------------------------------

    def create_as_customer(self, account: BillableAccount, card: CreditCard) -> BillableAccount:
        """Register the account and its card with the gateway."""

        profile = self.gateway.create_customer_profile(
            CustomerProfileRequest(
                merchant_customer_id=f"M_{account.account_id}",
                email=account.email,
                bill_to=account.bill_to(),
                card=card,
            )
        )
        updated = account.model_copy(
            update={
                "gateway_customer_id": profile.customer_profile_id,
                "gateway_payment_profile_id": profile.payment_profile_id,
                "card_brand": detect_card_brand(card.number),
                "card_last_four": card.last_four,
            }
        )
        logger.info("Gateway customer profile created for account %s", account.account_id)
        return self.repository.save_account(updated)

    def update_card(self, account: BillableAccount, card: CreditCard) -> BillableAccount:
        self._require_profile(account)
        self.gateway.update_customer_payment_profile(
            account.gateway_customer_id,
            account.gateway_payment_profile_id,
            account.bill_to(),
            card,
        )
        updated = account.model_copy(
            update={"card_brand": detect_card_brand(card.number), "card_last_four": card.last_four}
        )
        return self.repository.save_account(updated)

    def delete_gateway_profile(self, account: BillableAccount) -> BillableAccount:
        if not account.gateway_customer_id:
            raise AccountNotRegistered(account.account_id)
        self.gateway.delete_customer_profile(account.gateway_customer_id)
        updated = account.model_copy(
            update={
                "gateway_customer_id": None,
                "gateway_payment_profile_id": None,
                "card_brand": None,
                "card_last_four": None,
            }
        )
        return self.repository.save_account(updated)

    # One-off charges -----------------------------------------------------

    def charge(
        self,
        account: BillableAccount,
        amount: Number,
        description: str,
        *,
        currency: Optional[str] = None,
    ) -> Optional[ChargeReceipt]:
        """Charge the stored card; returns ``None`` when the card is declined.

        Raises ``PaymentHeldForReview`` when the merchant has to act on the
        transaction, and ``GatewayUnavailable`` when no response arrives.
        """

        self._require_profile(account)
        total = amount_with_tax(amount, account.tax_percentage)
        receipt = self.gateway.charge(
            account.gateway_customer_id,
            account.gateway_payment_profile_id,
            total,
            currency or account.currency or self.default_currency,
            description,
        )
        if receipt is None:
            logger.warning("Charge of %s declined for account %s", total, account.account_id)
        return receipt

    def invoice_for(self, account: BillableAccount, description: str, amount: Number) -> Optional[ChargeReceipt]:
        return self.charge(account, amount, description)

    def find_invoice(self, account: BillableAccount, transaction_id: str) -> TransactionDetails:
        return self.gateway.get_transaction_details(transaction_id)

    def find_invoice_or_fail(self, account: BillableAccount, transaction_id: str) -> Optional[TransactionDetails]:
        try:
            return self.find_invoice(account, transaction_id)
        except GatewayRejected:
            return None

    # Subscriptions -------------------------------------------------------

    def new_subscription(self, account: BillableAccount, name: str, plan_id: str) -> SubscriptionBuilder:
        return SubscriptionBuilder(
            account,
            name,
            plan_id,
            repository=self.repository,
            gateway=self.gateway,
            plans=self.plans,
            clock=self.clock,
        )

    def subscriptions(self, account: BillableAccount) -> List[Subscription]:
        return sorted(
            self.repository.list_subscriptions(account_id=account.account_id),
            key=lambda item: ensure_aware(item.created_at),
            reverse=True,
        )

    def subscription(self, account: BillableAccount, name: str = "default") -> Optional[Subscription]:
        """Most recently created subscription in the ``name`` slot."""

        return next((item for item in self.subscriptions(account) if item.name == name), None)

    def subscribed(self, account: BillableAccount, name: str = "default", plan_id: Optional[str] = None) -> bool:
        subscription = self.subscription(account, name)
        if subscription is None or not subscription.valid(self._now()):
            return False
        return plan_id is None or subscription.plan_id == plan_id

    def subscribed_to_plan(
        self,
        account: BillableAccount,
        plans: Union[str, Iterable[str]],
        name: str = "default",
    ) -> bool:
        wanted = {plans} if isinstance(plans, str) else set(plans)
        subscription = self.subscription(account, name)
        return bool(subscription and subscription.valid(self._now()) and subscription.plan_id in wanted)

    def on_plan(self, account: BillableAccount, plan_id: str) -> bool:
        now = self._now()
        return any(item.plan_id == plan_id and item.valid(now) for item in self.subscriptions(account))

    def on_trial(
        self,
        account: BillableAccount,
        name: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> bool:
        """Subscription trial for ``name``; without a name the account-level trial also counts."""

        now = self._now()
        if name is None and plan_id is None and account.on_generic_trial(now):
            return True
        subscription = self.subscription(account, name or "default")
        if subscription is None or not subscription.on_trial(now):
            return False
        return plan_id is None or subscription.plan_id == plan_id

    def on_generic_trial(self, account: BillableAccount) -> bool:
        return account.on_generic_trial(self._now())

    # Invoices ------------------------------------------------------------

    def upcoming_invoice(self, account: BillableAccount, name: str = "default") -> Optional[Invoice]:
        subscription = self.subscription(account, name)
        if subscription is None:
            return None
        return self._invoice_computer().upcoming_invoice(subscription, account)

    def invoices(self, account: BillableAccount, name: str = "default") -> List[Invoice]:
        subscription = self.subscription(account, name)
        if subscription is None:
            return []
        return self._invoice_computer().invoices(subscription, account)


__all__ = ["AccountBillingService", "detect_card_brand"]
