"""Sweep that closes local subscriptions the gateway reports as terminated."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Tuple

from ...exceptions import BillingError
from ...gateway.client import GatewayClient
from .clock import Clock, ensure_aware, utcnow
from .models import Subscription
from .subscriptions import BillingRepository, persist_changes

logger = logging.getLogger(__name__)


class ReconciliationOutcome(str, Enum):
    CLOSED = "closed"
    IN_SYNC = "in_sync"
    ALREADY_ENDED = "already_ended"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconciliationSummary:
    """Counts for one reconciliation sweep."""

    checked: int = 0
    closed: int = 0
    in_sync: int = 0
    already_ended: int = 0
    failures: int = 0
    closed_ids: Tuple[str, ...] = ()


@dataclass
class ReconciliationJob:
    """Re-fetches every subscription's gateway status, one at a time."""

    repository: BillingRepository
    gateway: GatewayClient
    clock: Clock = utcnow

    def _now(self) -> datetime:
        return ensure_aware(self.clock())

    def run(self) -> ReconciliationSummary:
        outcomes: List[Tuple[Subscription, ReconciliationOutcome]] = []
        for subscription in self.repository.list_subscriptions():
            try:
                outcome = self.reconcile(subscription)
            except BillingError as exc:
                logger.error(
                    "Reconciliation failed for subscription %s: %s",
                    subscription.subscription_id,
                    exc.message,
                    extra={"error": dict(exc.payload)},
                )
                outcome = ReconciliationOutcome.FAILED
            except Exception:
                logger.exception("Reconciliation failed for subscription %s", subscription.subscription_id)
                outcome = ReconciliationOutcome.FAILED
            outcomes.append((subscription, outcome))

        def count(kind: ReconciliationOutcome) -> int:
            return sum(1 for _, outcome in outcomes if outcome == kind)

        return ReconciliationSummary(
            checked=len(outcomes),
            closed=count(ReconciliationOutcome.CLOSED),
            in_sync=count(ReconciliationOutcome.IN_SYNC),
            already_ended=count(ReconciliationOutcome.ALREADY_ENDED),
            failures=count(ReconciliationOutcome.FAILED),
            closed_ids=tuple(
                str(subscription.subscription_id)
                for subscription, outcome in outcomes
                if outcome == ReconciliationOutcome.CLOSED
            ),
        )

    def reconcile(self, subscription: Subscription) -> ReconciliationOutcome:
        status = self.gateway.get_subscription_status(subscription.gateway_subscription_id)
        if not status.is_terminated:
            return ReconciliationOutcome.IN_SYNC
        if subscription.ends_at is not None:
            return ReconciliationOutcome.ALREADY_ENDED

        now = self._now()
        changes = {"ends_at": now}
        if subscription.on_trial(now):
            changes["trial_ends_at"] = now
        persist_changes(self.repository, subscription, changes, now)
        logger.info(
            "Subscription %s closed; gateway status %s",
            subscription.subscription_id,
            status.status,
        )
        return ReconciliationOutcome.CLOSED


__all__ = ["ReconciliationJob", "ReconciliationOutcome", "ReconciliationSummary"]
