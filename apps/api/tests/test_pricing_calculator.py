from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from pricepilot.business.pricing.calculator import AdjustmentRule, compute_new_price, compute_new_prices, quantize_price


def _rule(type_: str, direction: str, magnitude: str, target: str = "price") -> AdjustmentRule:
    return AdjustmentRule(type=type_, direction=direction, magnitude=Decimal(magnitude), target=target)


def test_percentage_increase() -> None:
    assert compute_new_price(Decimal("100"), _rule("percentage", "increase", "10")) == Decimal("110")


def test_percentage_decrease_is_floored_at_zero() -> None:
    assert compute_new_price(Decimal("100"), _rule("percentage", "decrease", "150")) == Decimal("0")


def test_fixed_decrease_is_floored_at_zero() -> None:
    assert compute_new_price(Decimal("5"), _rule("fixed", "decrease", "10")) == Decimal("0")


def test_fixed_increase() -> None:
    assert compute_new_price(Decimal("19.99"), _rule("fixed", "increase", "5")) == Decimal("24.99")


def test_missing_price_stays_missing() -> None:
    assert compute_new_price(None, _rule("fixed", "increase", "5")) is None


def test_calculator_keeps_full_precision_until_quantized() -> None:
    raw = compute_new_price(Decimal("19.99"), _rule("percentage", "increase", "15"))
    assert raw == Decimal("22.9885")
    assert quantize_price(raw) == Decimal("22.99")


def test_quantize_rounds_half_up() -> None:
    assert quantize_price(Decimal("2.345")) == Decimal("2.35")
    assert quantize_price(Decimal("2.344")) == Decimal("2.34")
    assert quantize_price(None) is None


def test_target_price_leaves_compare_price_untouched() -> None:
    price, compare_price = compute_new_prices(Decimal("50"), Decimal("60"), _rule("fixed", "decrease", "10"))
    assert price == Decimal("40.00")
    assert compare_price == Decimal("60.00")


def test_target_compare_price_leaves_price_untouched() -> None:
    price, compare_price = compute_new_prices(
        Decimal("50"),
        Decimal("60"),
        _rule("percentage", "increase", "50", target="compare_price"),
    )
    assert price == Decimal("50.00")
    assert compare_price == Decimal("90.00")


def test_target_both_applies_rule_to_each_field_independently() -> None:
    price, compare_price = compute_new_prices(Decimal("50"), Decimal("8"), _rule("fixed", "decrease", "10", target="both"))
    assert price == Decimal("40.00")
    assert compare_price == Decimal("0.00")


def test_target_both_with_missing_compare_price() -> None:
    price, compare_price = compute_new_prices(Decimal("80"), None, _rule("percentage", "decrease", "25", target="both"))
    assert price == Decimal("60.00")
    assert compare_price is None


def test_rule_rejects_unknown_type() -> None:
    with pytest.raises(ValidationError):
        AdjustmentRule(type="multiply", direction="increase", magnitude=Decimal("2"))


def test_rule_accepts_camel_case_compare_price_target() -> None:
    rule = AdjustmentRule.model_validate(
        {"type": "fixed", "direction": "increase", "magnitude": "5", "target": "comparePrice"}
    )

    assert rule.target == "compare_price"
    assert compute_new_prices(Decimal("10"), Decimal("20"), rule) == (Decimal("10.00"), Decimal("25.00"))
