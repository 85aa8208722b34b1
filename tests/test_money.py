"""Decimal money helper tests."""

from decimal import Decimal

import pytest

from bundlepay.services.money import from_minor_units, to_minor_units, to_money


class TestToMoney:

    def test_string_is_quantized(self):
        assert to_money("25") == Decimal("25.00")

    def test_float_goes_through_str(self):
        """25.1 must not become 25.09 via binary float error."""
        assert to_money(25.1) == Decimal("25.10")

    def test_half_up_rounding(self):
        assert to_money("0.005") == Decimal("0.01")
        assert to_money("2.345") == Decimal("2.35")

    def test_int_and_decimal(self):
        assert to_money(20) == Decimal("20.00")
        assert to_money(Decimal("19.999")) == Decimal("20.00")

    @pytest.mark.parametrize("bad", ["abc", "", None, True, "NaN", "Infinity", [1]])
    def test_rejects_non_numbers(self, bad):
        with pytest.raises(ValueError):
            to_money(bad)


class TestMinorUnits:

    def test_to_minor_units(self):
        assert to_minor_units(Decimal("25.00")) == 2500
        assert to_minor_units(Decimal("0.01")) == 1
        assert to_minor_units(Decimal("12.34")) == 1234

    def test_from_minor_units(self):
        assert from_minor_units(2500) == Decimal("25.00")
        assert from_minor_units("199") == Decimal("1.99")

    def test_from_minor_units_rejects_garbage(self):
        with pytest.raises(ValueError):
            from_minor_units("12.5x")
