from __future__ import annotations

import pytest

from offerpipe.errors import ConditionSyntaxError
from offerpipe.workflow.conditions import Condition, evaluate_condition

CONTEXT = {
    "totalOffers": 12,
    "secondFactorRequired": False,
    "brand": "Nike",
    "currentProxy": {"country": "DE"},
    "offers": [{"price": 45.5}],
}


@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ("totalOffers > 10", True),
        ("totalOffers <= 10", False),
        ("${totalOffers} == 12", True),
        ("brand == 'Nike'", True),
        ('brand != "Nike"', False),
        ("not secondFactorRequired", True),
        ("!secondFactorRequired && totalOffers > 0", True),
        ("currentProxy.country == 'DE' and offers.0.price < 50", True),
        ("totalOffers > 100 or brand == 'Nike'", True),
        ("totalOffers > 100 || (brand == 'Adidas' and true)", False),
        ("secondFactorRequired == false", True),
    ],
)
def test_expressions(expression: str, expected: bool) -> None:
    assert evaluate_condition(expression, CONTEXT) is expected


def test_unknown_names_are_null() -> None:
    assert evaluate_condition("missing == null", CONTEXT) is True
    assert evaluate_condition("missing", CONTEXT) is False
    # ordering against null never holds
    assert evaluate_condition("missing > 1", CONTEXT) is False
    assert evaluate_condition("missing < 1", CONTEXT) is False


def test_mismatched_types_compare_false() -> None:
    assert evaluate_condition("brand > 3", CONTEXT) is False


def test_condition_is_reusable() -> None:
    condition = Condition("totalOffers >= 5")
    assert condition.evaluate({"totalOffers": 5}) is True
    assert condition.evaluate({"totalOffers": 4}) is False


@pytest.mark.parametrize(
    "expression",
    ["", "totalOffers >", "(brand == 'Nike'", "__import__('os').system('ls')", "a == 1 2", "brand ~ 'x'"],
)
def test_invalid_expressions_raise(expression: str) -> None:
    with pytest.raises(ConditionSyntaxError):
        Condition(expression)


def test_names_resolve_through_data_only() -> None:
    assert evaluate_condition("offers.__class__ == null", CONTEXT) is True
    assert evaluate_condition("brand.lower", CONTEXT) is False
