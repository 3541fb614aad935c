"""Persistence layer for billing domain objects."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, List, Optional
from uuid import uuid4

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from ...exceptions import ConcurrentModification, InvalidState
from .models import BillableAccount, Subscription

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS billing_accounts (
    account_id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    email TEXT,
    address TEXT,
    city TEXT,
    state TEXT,
    zip TEXT,
    country TEXT,
    gateway_customer_id TEXT,
    gateway_payment_profile_id TEXT,
    card_brand TEXT,
    card_last_four TEXT,
    trial_ends_at TIMESTAMPTZ,
    tax_percentage NUMERIC(6, 3) NOT NULL DEFAULT 0,
    currency CHAR(3) NOT NULL DEFAULT 'usd',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS billing_subscriptions (
    subscription_id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL REFERENCES billing_accounts (account_id),
    name TEXT NOT NULL,
    plan_id TEXT NOT NULL,
    gateway_subscription_id TEXT NOT NULL,
    gateway_payment_profile_id TEXT,
    quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
    trial_ends_at TIMESTAMPTZ,
    ends_at TIMESTAMPTZ,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    version INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS billing_subscriptions_account_idx
    ON billing_subscriptions (account_id, name, created_at DESC);
"""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_account(row: dict) -> BillableAccount:
    return BillableAccount(
        account_id=row["account_id"],
        name=row.get("name") or "",
        email=row.get("email"),
        address=row.get("address"),
        city=row.get("city"),
        state=row.get("state"),
        zip=row.get("zip"),
        country=row.get("country"),
        gateway_customer_id=row.get("gateway_customer_id"),
        gateway_payment_profile_id=row.get("gateway_payment_profile_id"),
        card_brand=row.get("card_brand"),
        card_last_four=row.get("card_last_four"),
        trial_ends_at=row.get("trial_ends_at"),
        tax_percentage=row.get("tax_percentage") or 0,
        currency=(row.get("currency") or "usd").strip(),
    )


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        subscription_id=row["subscription_id"],
        account_id=row["account_id"],
        name=row["name"],
        plan_id=row["plan_id"],
        gateway_subscription_id=row["gateway_subscription_id"],
        gateway_payment_profile_id=row.get("gateway_payment_profile_id"),
        quantity=int(row["quantity"]),
        trial_ends_at=row.get("trial_ends_at"),
        ends_at=row.get("ends_at"),
        metadata=row.get("metadata") or {},
        version=int(row["version"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresBillingRepository:
    """Concrete repository persisting billing models in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(SCHEMA_SQL)

    def get_account(self, account_id: str) -> Optional[BillableAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_accounts
                WHERE account_id = %s
                LIMIT 1
                """,
                (account_id,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def save_account(self, account: BillableAccount) -> BillableAccount:
        """Insert or update an account record."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_accounts (
                    account_id,
                    name,
                    email,
                    address,
                    city,
                    state,
                    zip,
                    country,
                    gateway_customer_id,
                    gateway_payment_profile_id,
                    card_brand,
                    card_last_four,
                    trial_ends_at,
                    tax_percentage,
                    currency
                )
                VALUES (%(account_id)s, %(name)s, %(email)s, %(address)s, %(city)s,
                        %(state)s, %(zip)s, %(country)s, %(gateway_customer_id)s,
                        %(gateway_payment_profile_id)s, %(card_brand)s, %(card_last_four)s,
                        %(trial_ends_at)s, %(tax_percentage)s, %(currency)s)
                ON CONFLICT (account_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    email = EXCLUDED.email,
                    address = EXCLUDED.address,
                    city = EXCLUDED.city,
                    state = EXCLUDED.state,
                    zip = EXCLUDED.zip,
                    country = EXCLUDED.country,
                    gateway_customer_id = EXCLUDED.gateway_customer_id,
                    gateway_payment_profile_id = EXCLUDED.gateway_payment_profile_id,
                    card_brand = EXCLUDED.card_brand,
                    card_last_four = EXCLUDED.card_last_four,
                    trial_ends_at = EXCLUDED.trial_ends_at,
                    tax_percentage = EXCLUDED.tax_percentage,
                    currency = EXCLUDED.currency,
                    updated_at = NOW()
                RETURNING *
                """,
                account.model_dump(),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist billing account")
            return _row_to_account(row)

    def create_subscription(self, subscription: Subscription) -> Subscription:
        subscription_id = subscription.subscription_id or f"sub_{uuid4().hex}"
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_subscriptions (
                    subscription_id,
                    account_id,
                    name,
                    plan_id,
                    gateway_subscription_id,
                    gateway_payment_profile_id,
                    quantity,
                    trial_ends_at,
                    ends_at,
                    metadata,
                    version,
                    created_at,
                    updated_at
                )
                VALUES (%(subscription_id)s, %(account_id)s, %(name)s, %(plan_id)s,
                        %(gateway_subscription_id)s, %(gateway_payment_profile_id)s,
                        %(quantity)s, %(trial_ends_at)s, %(ends_at)s, %(metadata)s,
                        %(version)s, %(created_at)s, %(updated_at)s)
                RETURNING *
                """,
                {
                    **subscription.model_dump(),
                    "subscription_id": subscription_id,
                    "metadata": psycopg2.extras.Json(subscription.metadata),
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def save_subscription(self, subscription: Subscription, *, expected_version: int) -> Subscription:
        """Update mutable lifecycle fields with a version compare-and-swap.

        ``gateway_subscription_id`` and ``created_at`` are never rewritten.
        """

        if subscription.subscription_id is None:
            raise InvalidState("Subscription has not been persisted yet")
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE billing_subscriptions
                SET quantity = %(quantity)s,
                    trial_ends_at = %(trial_ends_at)s,
                    ends_at = %(ends_at)s,
                    metadata = %(metadata)s,
                    version = %(version)s,
                    updated_at = %(updated_at)s
                WHERE subscription_id = %(subscription_id)s
                  AND version = %(expected_version)s
                RETURNING *
                """,
                {
                    "subscription_id": subscription.subscription_id,
                    "quantity": subscription.quantity,
                    "trial_ends_at": subscription.trial_ends_at,
                    "ends_at": subscription.ends_at,
                    "metadata": psycopg2.extras.Json(subscription.metadata),
                    "version": subscription.version,
                    "updated_at": subscription.updated_at,
                    "expected_version": expected_version,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise ConcurrentModification(subscription.subscription_id, expected_version)
            return _row_to_subscription(row)

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_subscriptions
                WHERE subscription_id = %s
                LIMIT 1
                """,
                (subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def list_subscriptions(self, *, account_id: Optional[str] = None) -> List[Subscription]:
        with self._cursor() as cursor:
            if account_id is None:
                cursor.execute(
                    """
                    SELECT *
                    FROM billing_subscriptions
                    ORDER BY created_at DESC
                    """
                )
            else:
                cursor.execute(
                    """
                    SELECT *
                    FROM billing_subscriptions
                    WHERE account_id = %s
                    ORDER BY created_at DESC
                    """,
                    (account_id,),
                )
            return [_row_to_subscription(row) for row in cursor.fetchall()]


__all__ = ["PostgresBillingRepository", "SCHEMA_SQL", "managed_connection"]
