import pytest

from stickershop.services import pricing
from stickershop.services.pricing import PriceOptions


def scenario_options(**overrides):
    opts = {"materialMultiplier": 1.5, "complexityMultiplier": 1.0, "finishPriceModifier": 0}
    opts.update(overrides)
    return PriceOptions.from_mapping(opts)


def test_single_unit_with_material_multiplier():
    """1000 x 1.5 material, qty 1 -> 1500"""
    opts = scenario_options()
    assert pricing.unit_price(1000, opts) == 1500
    assert pricing.calculate_item_price(1000, opts, 1) == 1500
    assert pricing.line_total(1000, opts, 1) == 1500


def test_ten_units_get_ten_percent_off():
    opts = scenario_options()
    unit = pricing.discounted_unit_price(pricing.unit_price(1000, opts), 10)
    assert unit == 1350
    assert pricing.line_total(1000, opts, 10) == 13500


def test_steps_round_before_the_next_one():
    # 333 * 1.5 = 499.5 -> 500, +1 -> 501, * 1.1 = 551.1 -> 551
    opts = PriceOptions(material_multiplier=1.5, finish_price_modifier=1, complexity_multiplier=1.1)
    assert pricing.unit_price(333, opts) == 551


def test_unit_price_fallbacks():
    assert pricing.unit_price(None, PriceOptions()) == 500
    assert pricing.unit_price(0, PriceOptions()) == 500
    assert pricing.unit_price(800, PriceOptions()) == 800
    assert pricing.unit_price(800, PriceOptions.from_mapping({"unitPrice": "1200"})) == 1200
    assert pricing.unit_price(800, PriceOptions.from_mapping({"unitPrice": "abc"})) == 800


def test_non_positive_multipliers_are_ignored():
    opts = PriceOptions.from_mapping({"materialMultiplier": 0, "complexityMultiplier": -2})
    assert pricing.unit_price(1000, opts) == 1000


def test_finish_modifier_is_additive_and_not_scaled_by_material():
    opts = PriceOptions.from_mapping({"materialMultiplier": 2, "finishPriceModifier": "100"})
    assert pricing.unit_price(500, opts) == 1100


def test_option_values_parse_from_strings():
    opts = PriceOptions.from_mapping(
        {"unitPrice": "700", "materialMultiplier": "1.2", "finishPriceModifier": "50", "size": "Large"}
    )
    assert opts == PriceOptions(unit_price=700, material_multiplier=1.2, finish_price_modifier=50)


@pytest.mark.parametrize(
    "quantity, percent",
    [(1, 0), (9, 0), (10, 10), (24, 10), (25, 20), (49, 20), (50, 25), (500, 25)],
)
def test_exactly_one_tier_applies(quantity, percent):
    assert pricing.discount_percent(quantity) == percent


def test_discount_is_monotonic():
    units = [pricing.discounted_unit_price(1500, q) for q in range(1, 120)]
    assert all(a >= b for a, b in zip(units, units[1:]))
    assert pricing.discounted_unit_price(1500, 10) <= pricing.discounted_unit_price(1500, 9)


def test_same_inputs_give_same_price():
    opts = PriceOptions.from_mapping({"materialMultiplier": 1.37, "finishPriceModifier": 33, "complexityMultiplier": 1.91})
    results = {pricing.line_total(777, opts, 37) for _ in range(50)}
    assert len(results) == 1
    assert isinstance(results.pop(), int)


def test_order_totals():
    totals = pricing.order_totals([1500, 13500])
    assert totals.subtotal == 15000
    assert totals.shipping == 499
    assert totals.tax == 1200
    assert totals.total == 15000 + 499 + 1200


def test_empty_order_has_no_shipping():
    assert pricing.order_totals([]) == pricing.Totals(0, 0, 0, 0)


def test_round_half_up():
    assert pricing.round_half_up(0.5) == 1
    assert pricing.round_half_up(2.5) == 3
    assert pricing.round_half_up(2.4999) == 2
