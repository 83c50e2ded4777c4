import pytest

from subscription_platform.billing.errors import InvalidPlanSelection, ValidationError
from subscription_platform.billing.pricing import (
    PERIODS,
    PLAN_CATALOG,
    PLAN_TYPES,
    catalog_as_dict,
    price_of,
    validate_selection,
)


EXPECTED = {
    ("basic", "monthly"): 999,
    ("basic", "quarterly"): 2499,
    ("basic", "6months"): 4999,
    ("basic", "1year"): 8999,
    ("pro", "monthly"): 1999,
    ("pro", "quarterly"): 5499,
    ("pro", "6months"): 9999,
    ("pro", "1year"): 17999,
}


@pytest.mark.parametrize("plan_type,period", sorted(EXPECTED))
def test_price_of_matches_published_amounts(plan_type, period):
    price = price_of(plan_type, period)
    assert price.amount == EXPECTED[(plan_type, period)]
    assert isinstance(price.amount, int)
    assert price.amount > 0


def test_catalog_covers_every_plan_and_period():
    assert set(PLAN_CATALOG) == set(PLAN_TYPES)
    for plan_type in PLAN_TYPES:
        assert tuple(PLAN_CATALOG[plan_type]) == PERIODS


def test_labels():
    assert price_of("basic", "6months").label == "6 Months"
    assert price_of("pro", "1year").label == "1 Year"


@pytest.mark.parametrize("plan_type,period", [("enterprise", "monthly"), ("basic", "weekly"), ("", ""), ("pro", None)])
def test_unknown_selection_is_rejected(plan_type, period):
    with pytest.raises(InvalidPlanSelection):
        price_of(plan_type, period)
    with pytest.raises(ValidationError):
        validate_selection(plan_type, period)


def test_validate_selection_normalizes_case_and_aliases():
    assert validate_selection(" PRO ", "Quarterly") == ("pro", "quarterly")
    assert validate_selection("basic", "semiannual") == ("basic", "6months")
    assert validate_selection("basic", "annual") == ("basic", "1year")


def test_catalog_is_read_only():
    with pytest.raises(TypeError):
        PLAN_CATALOG["pro"]["monthly"] = None  # type: ignore[index]


def test_catalog_as_dict_is_json_ready():
    data = catalog_as_dict()
    assert data["pro"]["quarterly"] == {"amount": 5499, "label": "Quarterly"}
    assert sum(len(v) for v in data.values()) == len(EXPECTED)
