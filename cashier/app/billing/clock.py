"""Date arithmetic for billing days, trial windows and grace periods.

All billing-date computations are anchored to a single canonical timezone so
that accounts in different zones never drift apart. Values returned from this
module are timezone-aware and expressed in UTC.
"""
from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo

CANONICAL_TIMEZONE = ZoneInfo("America/Denver")

# Occurrence count the gateway treats as "no end date".
UNBOUNDED_OCCURRENCES = 9999

Clock = Callable[[], datetime]


class IntervalUnit(str, Enum):
    """Units a plan's billing interval can be expressed in."""

    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


# Approximate on purpose: grace periods are sized in whole days, not calendar months.
_DAYS_PER_UNIT = {
    IntervalUnit.DAYS: 1,
    IntervalUnit.WEEKS: 7,
    IntervalUnit.MONTHS: 31,
    IntervalUnit.YEARS: 365,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""

    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def billing_days(unit: IntervalUnit, length: int) -> int:
    """Return the day count of one billing interval."""

    if length < 1:
        raise ValueError("interval length must be >= 1")
    return _DAYS_PER_UNIT[IntervalUnit(unit)] * length


def _shift_month(year: int, month: int, months: int) -> tuple[int, int]:
    index = month - 1 + months
    return year + index // 12, index % 12 + 1


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""

    year, month = _shift_month(moment.year, moment.month, months)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def billing_anchor_day(created_at: datetime) -> int:
    """Day of month on which a subscription created at ``created_at`` bills."""

    return ensure_aware(created_at).astimezone(CANONICAL_TIMEZONE).day


def anchored_billing_date(anchor_day: int, now: datetime, *, months_ahead: int = 0) -> datetime:
    """Billing date for ``anchor_day`` in the month of ``now`` (plus ``months_ahead``).

    The result keeps the current time of day in the canonical timezone, and a
    day past the end of a short month is clamped to its last day.
    """

    local_now = ensure_aware(now).astimezone(CANONICAL_TIMEZONE)
    year, month = _shift_month(local_now.year, local_now.month, months_ahead)
    day = min(anchor_day, calendar.monthrange(year, month)[1])
    local_date = local_now.replace(year=year, month=month, day=day)
    return local_date.astimezone(timezone.utc)


def whole_months_between(start: datetime, end: datetime) -> int:
    """Number of complete calendar months from ``start`` to ``end`` (never negative)."""

    start = ensure_aware(start).astimezone(timezone.utc)
    end = ensure_aware(end).astimezone(timezone.utc)
    if end <= start:
        return 0
    months = (end.year - start.year) * 12 + end.month - start.month
    if add_months(start, months) > end:
        months -= 1
    return max(months, 0)


def is_after(boundary: Optional[datetime], now: datetime) -> bool:
    """``True`` when ``boundary`` is set and strictly later than ``now``."""

    return boundary is not None and ensure_aware(boundary) > ensure_aware(now)


def days_from(moment: datetime, days: int) -> datetime:
    return ensure_aware(moment).astimezone(timezone.utc) + timedelta(days=days)


__all__ = [
    "CANONICAL_TIMEZONE",
    "Clock",
    "IntervalUnit",
    "UNBOUNDED_OCCURRENCES",
    "add_months",
    "anchored_billing_date",
    "billing_anchor_day",
    "billing_days",
    "days_from",
    "ensure_aware",
    "is_after",
    "utcnow",
    "whole_months_between",
]
