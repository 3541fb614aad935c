"""Scheduled entry point that reconciles local subscriptions with the gateway.

Run it from cron or any scheduler::

    cashier-reconcile
    python -m cashier.reconcile --log-level DEBUG

The process exits with status 0 once a sweep completed (individual
subscriptions may still have failed; they are logged and counted) and with
status 1 when the sweep could not run at all.
"""
from __future__ import annotations

import argparse
import logging
import math
import os
import sys
from datetime import datetime, timezone
from functools import partial
from threading import Lock
from typing import Dict, Mapping, Optional, Sequence

import psycopg2
from dotenv import load_dotenv

from . import app_context
from .app.billing import ReconciliationJob, ReconciliationSummary
from .app.services.billing import get_reconciliation_job
from .exceptions import BillingError

logger = logging.getLogger(__name__)

_RECONCILIATION_METRICS: Dict[str, object] = {
    "runs": 0,
    "checked": 0,
    "closed": 0,
    "failures": 0,
    "failed_runs": 0,
    "last_run_at": None,
    "last_success_at": None,
    "last_error": None,
}
_metrics_lock = Lock()


def _record_run_start(started_at: datetime) -> None:
    with _metrics_lock:
        _RECONCILIATION_METRICS["runs"] = int(_RECONCILIATION_METRICS.get("runs", 0)) + 1
        _RECONCILIATION_METRICS["last_run_at"] = started_at


def _record_run_success(completed_at: datetime, summary: ReconciliationSummary) -> None:
    with _metrics_lock:
        metrics = _RECONCILIATION_METRICS
        metrics["checked"] = int(metrics.get("checked", 0)) + summary.checked
        metrics["closed"] = int(metrics.get("closed", 0)) + summary.closed
        metrics["failures"] = int(metrics.get("failures", 0)) + summary.failures
        metrics["last_success_at"] = completed_at
        metrics["last_error"] = None


def _record_run_failure(error: Exception) -> None:
    with _metrics_lock:
        metrics = _RECONCILIATION_METRICS
        metrics["failed_runs"] = int(metrics.get("failed_runs", 0)) + 1
        metrics["last_error"] = f"{type(error).__name__}: {error}"


def run_reconciliation_job(
    *,
    job: Optional[ReconciliationJob] = None,
    now: Optional[datetime] = None,
) -> ReconciliationSummary:
    current_time = now or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)

    reconciliation = job or get_reconciliation_job()
    _record_run_start(current_time)
    try:
        summary = reconciliation.run()
    except Exception as exc:
        _record_run_failure(exc)
        logger.exception("Subscription reconciliation failed")
        raise
    _record_run_success(current_time, summary)
    logger.info(
        "Subscription reconciliation completed",
        extra={
            "checked": summary.checked,
            "closed": summary.closed,
            "in_sync": summary.in_sync,
            "already_ended": summary.already_ended,
            "failures": summary.failures,
        },
    )
    return summary


def get_reconciliation_metrics() -> Dict[str, object]:
    with _metrics_lock:
        value = _RECONCILIATION_METRICS
        return {
            **value,
            "last_run_at": value["last_run_at"].isoformat() if value.get("last_run_at") else None,
            "last_success_at": value["last_success_at"].isoformat() if value.get("last_success_at") else None,
        }


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        _RECONCILIATION_METRICS.update(
            {
                "runs": 0,
                "checked": 0,
                "closed": 0,
                "failures": 0,
                "failed_runs": 0,
                "last_run_at": None,
                "last_success_at": None,
                "last_error": None,
            }
        )


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_database_config(env: Optional[Mapping[str, str]] = None) -> Dict[str, object]:
    """Connection keyword arguments for :func:`psycopg2.connect`.

    ``DATABASE_URL`` wins over the individual ``DB_*`` variables.
    """

    env_mapping = os.environ if env is None else env
    url = env_mapping.get("DATABASE_URL")
    if url:
        return {"dsn": url}
    return dict(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=int(env_mapping.get("DB_PORT", "5432")),
        dbname=env_mapping.get("DB_NAME", "cashier"),
        user=env_mapping.get("DB_USER", "cashier"),
        password=env_mapping.get("DB_PASSWORD", ""),
        connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT", "5")),
    )


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cashier-reconcile",
        description="Close local subscriptions the payment gateway reports as terminated.",
    )
    parser.add_argument("--log-level", default=os.getenv("CASHIER_LOG_LEVEL", "INFO"))
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        db_config = load_database_config()
        app_context.configure(get_conn=partial(psycopg2.connect, **db_config))
        run_reconciliation_job()
    except (BillingError, ValueError, psycopg2.Error) as exc:
        logger.error("Reconciliation could not run: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
