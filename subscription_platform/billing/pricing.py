"""Plan catalog.

Amounts are integers in the smallest currency unit (paise). The same table is used
to render prices in the checkout client and to compute the amount charged by the
server, so the two can never drift apart. Clients never supply an amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple

from .errors import InvalidPlanSelection


PLAN_TYPES: Tuple[str, ...] = ("basic", "pro")
PERIODS: Tuple[str, ...] = ("monthly", "quarterly", "6months", "1year")

# Accepted spellings on input; stored and sent on the wire in canonical form.
PERIOD_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "semiannual": "6months",
        "annual": "1year",
    }
)

PERIOD_MONTHS: Mapping[str, int] = MappingProxyType(
    {
        "monthly": 1,
        "quarterly": 3,
        "6months": 6,
        "1year": 12,
    }
)


@dataclass(frozen=True)
class PlanPrice:
    amount: int
    label: str


_LABELS = {
    "monthly": "Monthly",
    "quarterly": "Quarterly",
    "6months": "6 Months",
    "1year": "1 Year",
}

_AMOUNTS = {
    "basic": {"monthly": 999, "quarterly": 2499, "6months": 4999, "1year": 8999},
    "pro": {"monthly": 1999, "quarterly": 5499, "6months": 9999, "1year": 17999},
}

PLAN_CATALOG: Mapping[str, Mapping[str, PlanPrice]] = MappingProxyType(
    {
        plan: MappingProxyType({period: PlanPrice(amount=amounts[period], label=_LABELS[period]) for period in PERIODS})
        for plan, amounts in _AMOUNTS.items()
    }
)

for _plan, _periods in PLAN_CATALOG.items():
    for _period, _price in _periods.items():
        if _price.amount <= 0:
            raise RuntimeError(f"non_positive_price: {_plan}/{_period}")


def normalize_plan_type(plan_type: Any) -> str:
    p = str(plan_type or "").strip().lower()
    if p not in PLAN_TYPES:
        raise InvalidPlanSelection(f"invalid_plan_type: {plan_type!r}")
    return p


def normalize_period(period: Any) -> str:
    p = str(period or "").strip().lower()
    p = PERIOD_ALIASES.get(p, p)
    if p not in PERIODS:
        raise InvalidPlanSelection(f"invalid_period: {period!r}")
    return p


def validate_selection(plan_type: Any, period: Any) -> Tuple[str, str]:
    """Return the canonical (plan_type, period) pair or raise InvalidPlanSelection."""
    return normalize_plan_type(plan_type), normalize_period(period)


def price_of(plan_type: str, period: str) -> PlanPrice:
    try:
        return PLAN_CATALOG[plan_type][period]
    except KeyError:
        raise InvalidPlanSelection(f"invalid_plan_selection: {plan_type!r}/{period!r}") from None


def catalog_as_dict() -> Dict[str, Dict[str, Dict[str, Any]]]:
    return {
        plan: {period: {"amount": price.amount, "label": price.label} for period, price in periods.items()}
        for plan, periods in PLAN_CATALOG.items()
    }
