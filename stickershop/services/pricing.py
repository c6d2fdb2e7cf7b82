"""
Line-item pricing shared by the server (authoritative) and the client
stores (optimistic). Every amount is an integer number of cents and every
step rounds half-up to whole cents before the next one runs.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from stickershop.constants import (
    DEFAULT_UNIT_PRICE,
    QUANTITY_TIERS,
    SHIPPING_FLAT,
    TAX_PERCENT,
)

_INT_RE = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_int(value: Any) -> Optional[int]:
    """Leading-integer parse: 12, "12", "12.7", "12px" -> 12; junk -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    m = _INT_RE.match(str(value))
    return int(m.group(1)) if m else None


def parse_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    m = _FLOAT_RE.match(str(value))
    return float(m.group(1)) if m else None


@dataclass(frozen=True)
class PriceOptions:
    unit_price: Optional[int] = None
    material_multiplier: Optional[float] = None
    finish_price_modifier: Optional[int] = None
    complexity_multiplier: Optional[float] = None

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]]) -> "PriceOptions":
        options = options or {}
        return cls(
            unit_price=parse_int(options.get("unitPrice")),
            material_multiplier=parse_float(options.get("materialMultiplier")),
            finish_price_modifier=parse_int(options.get("finishPriceModifier")),
            complexity_multiplier=parse_float(options.get("complexityMultiplier")),
        )


@dataclass(frozen=True)
class Totals:
    subtotal: int
    shipping: int
    tax: int
    total: int


def unit_price(base_price: Optional[int], options: PriceOptions) -> int:
    # a zero override or a zero product price falls through to the next source
    price = options.unit_price or base_price or DEFAULT_UNIT_PRICE

    if options.material_multiplier is not None and options.material_multiplier > 0:
        price = round_half_up(price * options.material_multiplier)

    if options.finish_price_modifier is not None:
        price += options.finish_price_modifier

    if options.complexity_multiplier is not None and options.complexity_multiplier > 0:
        price = round_half_up(price * options.complexity_multiplier)

    return max(price, 0)


def calculate_item_price(base_price: Optional[int], options: PriceOptions, quantity: int = 1) -> int:
    return round_half_up(unit_price(base_price, options) * quantity)


def discount_percent(quantity: int) -> int:
    for min_qty, percent in QUANTITY_TIERS:
        if quantity >= min_qty:
            return percent
    return 0


def discounted_unit_price(unit: int, quantity: int) -> int:
    percent = discount_percent(quantity)
    if not percent:
        return unit
    return round_half_up(unit * (100 - percent) / 100)


def line_total(base_price: Optional[int], options: PriceOptions, quantity: int) -> int:
    unit = discounted_unit_price(unit_price(base_price, options), quantity)
    return round_half_up(unit * quantity)


def order_totals(line_totals: Iterable[int]) -> Totals:
    subtotal = sum(line_totals)
    # nothing to ship for an empty cart
    shipping = SHIPPING_FLAT if subtotal > 0 else 0
    tax = round_half_up(subtotal * TAX_PERCENT / 100)
    return Totals(subtotal=subtotal, shipping=shipping, tax=tax, total=subtotal + shipping + tax)
