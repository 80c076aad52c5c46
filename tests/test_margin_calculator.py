"""
Tests for price derivation.

Tests cover:
- calculated/final price formulas and half-up rounding
- percentages rounded to two places before use
- input validation (cost, discount)
- recompute idempotence
"""
from decimal import Decimal

import pytest

from catalog_pricing.core.exceptions import PricingValidationError
from catalog_pricing.services.margin_calculator import (
    apply_discount, calculate_price, final_price, price_variant, round2,
)


# =============================================================
# TEST: Formulas
# =============================================================

class TestFormulas:

    def test_calculated_price_from_cost_and_margin(self):
        assert calculate_price(Decimal("10.00"), Decimal("30")) == Decimal("13.00")

    def test_discount_applied_to_calculated_price(self):
        assert apply_discount(Decimal("13.00"), Decimal("20")) == Decimal("10.40")

    def test_rounding_is_half_up(self):
        # 0.125 would round to 0.12 under banker's rounding
        assert round2(Decimal("0.125")) == Decimal("0.13")
        assert round2(Decimal("2.675")) == Decimal("2.68")

    def test_final_price_rounds_from_rounded_calculated_price(self):
        """Final price is derived from the already-rounded calculated price."""
        calculated = calculate_price(Decimal("3.33"), Decimal("50"))  # 4.995 -> 5.00
        assert calculated == Decimal("5.00")
        assert final_price(calculated, True, Decimal("10")) == Decimal("4.50")

    def test_inactive_offer_keeps_calculated_price(self):
        assert final_price(Decimal("13.00"), False, Decimal("20")) == Decimal("13.00")

    def test_active_offer_without_discount_keeps_calculated_price(self):
        assert final_price(Decimal("13.00"), True, None) == Decimal("13.00")

    def test_zero_margin_and_full_discount(self):
        breakdown = price_variant(Decimal("10.00"), Decimal("0"), True, Decimal("100"))
        assert breakdown.calculated_price == Decimal("10.00")
        assert breakdown.final_price == Decimal("0.00")

    def test_negative_margin_sells_below_cost(self):
        assert calculate_price(Decimal("10.00"), Decimal("-10")) == Decimal("9.00")

    def test_string_and_int_inputs_avoid_float_artifacts(self):
        assert calculate_price("19.99", 25) == Decimal("24.99")

    def test_percentages_take_stored_precision(self):
        breakdown = price_variant(Decimal("1000.00"), "12.345", True, "10.005")
        assert breakdown.margin_percent == Decimal("12.35")
        assert breakdown.calculated_price == Decimal("1123.50")
        assert breakdown.offer_discount_percent == Decimal("10.01")
        assert breakdown.final_price == Decimal("1011.04")


# =============================================================
# TEST: Validation
# =============================================================

class TestValidation:

    def test_missing_cost_rejected(self):
        with pytest.raises(PricingValidationError):
            calculate_price(None, Decimal("30"))

    def test_negative_cost_rejected(self):
        with pytest.raises(PricingValidationError):
            price_variant(Decimal("-1.00"), Decimal("30"))

    @pytest.mark.parametrize("discount", ["-1", "100.01", "250"])
    def test_discount_out_of_range_rejected(self, discount):
        with pytest.raises(PricingValidationError):
            apply_discount(Decimal("13.00"), Decimal(discount))

    def test_non_numeric_margin_rejected(self):
        with pytest.raises(PricingValidationError):
            calculate_price(Decimal("10.00"), "thirty")


# =============================================================
# TEST: Idempotence
# =============================================================

class TestRecompute:

    def test_recompute_is_idempotent(self):
        """Recomputing from the same stored inputs yields identical results."""
        first = price_variant(Decimal("47.35"), Decimal("37.5"), True, Decimal("12.5"))
        second = price_variant(first.cost, first.margin_percent, first.is_offer_active, first.offer_discount_percent)
        assert first == second

    def test_breakdown_to_dict(self):
        breakdown = price_variant(Decimal("8.00"), Decimal("25"))
        assert breakdown.to_dict() == {
            "cost": Decimal("8.00"),
            "margin_percent": Decimal("25"),
            "calculated_price": Decimal("10.00"),
            "is_offer_active": False,
            "offer_discount_percent": None,
            "final_price": Decimal("10.00"),
        }
