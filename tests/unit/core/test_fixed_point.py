"""
Tests for fixed-point ratio arithmetic.

Rounding direction matters more than precision here: every helper floors,
and the 9-decimal helpers truncate their operands before dividing.
"""
from decimal import Decimal

import pytest

from delta_neutral.core.fixed_point import (
    DECIMAL_ONE,
    ONE,
    atomics,
    decimal_add,
    decimal_division,
    decimal_multiplication,
    decimal_sub,
    div_floor,
    from_ratio,
    midpoint,
    mul_floor,
    multiply_ratio,
    reverse_decimal,
    to_decimal,
)


class TestConversions:
    """Tests for Decimal <-> atomics conversions."""

    def test_atomics_scales_by_ten_to_eighteen(self):
        assert atomics(Decimal("1.5")) == 1_500_000_000_000_000_000
        assert atomics(1) == DECIMAL_ONE

    def test_one_is_the_unit_ratio(self):
        assert ONE == Decimal(1)
        assert atomics(ONE) == DECIMAL_ONE
        assert mul_floor(605_460_031, ONE) == 605_460_031

    def test_atomics_floors_extra_digits(self):
        assert atomics(Decimal("0.1234567890123456789")) == 123_456_789_012_345_678

    def test_to_decimal_accepts_strings_ints_and_floats(self):
        assert to_decimal("2.2") == Decimal("2.2")
        assert to_decimal(3) == Decimal("3")
        # Floats go through str() so 0.1 stays 0.1
        assert to_decimal(0.1) == Decimal("0.1")

    def test_from_ratio_floors(self):
        assert from_ratio(1, 3) == Decimal("0.333333333333333333")
        assert from_ratio(2, 3) == Decimal("0.666666666666666666")

    def test_from_ratio_zero_denominator(self):
        with pytest.raises(ZeroDivisionError):
            from_ratio(1, 0)


class TestFlooringOperations:
    """Tests for integer-amount times ratio helpers."""

    def test_mul_floor(self):
        assert mul_floor(10, Decimal("0.15")) == 1
        assert mul_floor(1_000_000, Decimal("1.1")) == 1_100_000

    def test_div_floor(self):
        assert div_floor(600, Decimal("1.1")) == 545
        assert div_floor(420, Decimal("1.1")) == 381

    def test_multiply_ratio_keeps_full_width(self):
        big = 2 ** 127
        assert multiply_ratio(big, 3, 3) == big
        assert multiply_ratio(10, 1, 3) == 3

    def test_add_and_sub(self):
        assert decimal_add("1.5", "0.3") == Decimal("1.8")
        assert decimal_sub("2.2", "1.8") == Decimal("0.4")

    def test_midpoint(self):
        assert midpoint("1.8", "2.2") == Decimal("2")
        assert midpoint("2", "2.5") == Decimal("2.25")


class TestNineDecimalHelpers:
    """Tests for helpers that truncate operands to 9 decimals first."""

    def test_reverse_decimal(self):
        assert reverse_decimal(Decimal("2")) == Decimal("0.5")
        assert reverse_decimal(Decimal("3")) == Decimal("0.333333333333333333")

    def test_decimal_division(self):
        assert decimal_division(Decimal("1.1"), Decimal("10")) == Decimal("0.11")

    def test_decimal_division_truncates_operands(self):
        # 1.0000000009 truncates to 1.000000000 before dividing
        assert decimal_division(Decimal("1.0000000009"), Decimal("1")) == Decimal("1")

    def test_decimal_multiplication(self):
        assert decimal_multiplication(Decimal("2"), Decimal("12")) == Decimal("24")
        assert decimal_multiplication(Decimal("2.25"), Decimal("8")) == Decimal("18")
