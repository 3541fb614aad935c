"""Plan catalog: static billing templates keyed by plan identifier."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from ...exceptions import UnknownPlan
from .amounts import to_decimal
from .clock import UNBOUNDED_OCCURRENCES, IntervalUnit, billing_days


@dataclass(frozen=True)
class BillingInterval:
    """Length of one billing cycle."""

    unit: IntervalUnit
    length: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit", IntervalUnit(self.unit))
        if self.length < 1:
            raise ValueError("interval length must be >= 1")

    @property
    def days(self) -> int:
        return billing_days(self.unit, self.length)


@dataclass(frozen=True)
class PlanDefinition:
    """Describes a recurring plan as registered with the gateway."""

    key: str
    display_name: str
    interval: BillingInterval
    amount: Decimal
    total_occurrences: int = UNBOUNDED_OCCURRENCES
    trial_occurrences: int = 0
    trial_amount: Decimal = Decimal("0")
    trial_days: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "trial_amount", to_decimal(self.trial_amount))
        if self.amount < 0 or self.trial_amount < 0:
            raise ValueError(f"Plan {self.key} amounts must be >= 0")
        if self.total_occurrences < 1:
            raise ValueError(f"Plan {self.key} needs at least one occurrence")
        if self.trial_occurrences < 0 or self.trial_days < 0:
            raise ValueError(f"Plan {self.key} trial settings must be >= 0")

    @property
    def unbounded(self) -> bool:
        return self.total_occurrences == UNBOUNDED_OCCURRENCES

    @property
    def billing_days(self) -> int:
        return self.interval.days


PLAN_CATALOG: Mapping[str, PlanDefinition] = MappingProxyType(
    {
        "monthly-10-1": PlanDefinition(
            key="monthly-10-1",
            display_name="main",
            interval=BillingInterval(IntervalUnit.MONTHS, 1),
            amount=Decimal("9.99"),
        ),
    }
)


def plan_from_config(key: str, raw: Mapping[str, Any]) -> PlanDefinition:
    """Build a :class:`PlanDefinition` from one entry of the plans file."""

    try:
        interval = raw["interval"]
        return PlanDefinition(
            key=key,
            display_name=str(raw.get("display_name") or raw.get("name") or key),
            interval=BillingInterval(
                unit=IntervalUnit(str(interval["unit"]).lower()),
                length=int(interval.get("length", 1)),
            ),
            amount=to_decimal(raw["amount"]),
            total_occurrences=int(raw.get("total_occurrences", UNBOUNDED_OCCURRENCES)),
            trial_occurrences=int(raw.get("trial_occurrences", 0)),
            trial_amount=to_decimal(raw.get("trial_amount", 0)),
            trial_days=int(raw.get("trial_days", 0)),
        )
    except KeyError as exc:
        raise ValueError(f"Plan {key} is missing required field {exc.args[0]!r}") from exc


def load_plan_catalog(
    source: Optional[Mapping[str, Mapping[str, Any]]] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> Mapping[str, PlanDefinition]:
    """Load the plan catalog once at start-up; the result is read-only.

    ``source`` takes precedence; otherwise the JSON file named by
    ``CASHIER_PLANS_FILE`` is read, falling back to the built-in catalog.
    """

    if source is None:
        env_mapping = os.environ if env is None else env
        path = env_mapping.get("CASHIER_PLANS_FILE")
        if not path:
            return PLAN_CATALOG
        with open(path, encoding="utf-8") as handle:
            source = json.load(handle)

    plans: Dict[str, PlanDefinition] = {
        str(key): plan_from_config(str(key), raw) for key, raw in source.items()
    }
    return MappingProxyType(plans)


def get_plan_definition(
    plan_id: str,
    catalog: Optional[Mapping[str, PlanDefinition]] = None,
) -> PlanDefinition:
    """Return a plan definition, raising :class:`UnknownPlan` if absent."""

    plans = PLAN_CATALOG if catalog is None else catalog
    try:
        return plans[plan_id]
    except KeyError:
        raise UnknownPlan(plan_id) from None


__all__ = [
    "BillingInterval",
    "PLAN_CATALOG",
    "PlanDefinition",
    "get_plan_definition",
    "load_plan_catalog",
    "plan_from_config",
]
