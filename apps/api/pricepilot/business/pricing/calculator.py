"""Price adjustment rules.

Computation happens at full ``Decimal`` precision; rounding to currency
precision happens once, when a value is persisted or sent to Shopify, so
price and compare-at price derived from the same rule never accumulate
rounding drift.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator


AdjustmentType = Literal["fixed", "percentage"]
AdjustmentDirection = Literal["increase", "decrease"]
AdjustmentTarget = Literal["price", "compare_price", "both"]

CURRENCY_QUANTUM = Decimal("0.01")
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class AdjustmentRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: AdjustmentType
    direction: AdjustmentDirection
    magnitude: Decimal
    target: AdjustmentTarget = "price"

    @field_validator("target", mode="before")
    @classmethod
    def _accept_camel_case_target(cls, value: object) -> object:
        # The admin UI sends "comparePrice".
        return "compare_price" if value == "comparePrice" else value

    @property
    def adjusts_price(self) -> bool:
        return self.target in ("price", "both")

    @property
    def adjusts_compare_price(self) -> bool:
        return self.target in ("compare_price", "both")


def quantize_price(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(value).quantize(CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)


def compute_new_price(current_price: Decimal | None, rule: AdjustmentRule) -> Decimal | None:
    if current_price is None:
        return None

    current = Decimal(current_price)
    magnitude = Decimal(rule.magnitude)
    if rule.type == "fixed":
        computed = current + magnitude if rule.direction == "increase" else current - magnitude
    else:
        factor = magnitude / _HUNDRED
        computed = current * (1 + factor) if rule.direction == "increase" else current * (1 - factor)

    return max(_ZERO, computed)


def compute_new_prices(
    price: Decimal | None,
    compare_price: Decimal | None,
    rule: AdjustmentRule,
) -> tuple[Decimal | None, Decimal | None]:
    """Return the persisted (price, compare_price) pair for one item.

    Untargeted fields keep their current value. ``both`` applies the same rule
    to each field independently.
    """
    new_price = compute_new_price(price, rule) if rule.adjusts_price else price
    new_compare_price = compute_new_price(compare_price, rule) if rule.adjusts_compare_price else compare_price
    return quantize_price(new_price), quantize_price(new_compare_price)
