"""
Fixed-point ratio arithmetic with deterministic floor rounding.

Ratios are carried as decimal.Decimal values with at most 18 fractional
digits and every operation is evaluated on their integer "atomics"
(value * 10**18). Token amounts are plain Python ints, so intermediates
never overflow. The order of flooring in each helper matters: the debt
market computes mint amounts and collateral targets with exactly these
steps, and the sizing search has to reproduce them to the unit.
"""
import math
from decimal import Decimal, Context, ROUND_FLOOR
from typing import Union

DECIMAL_PLACES = 18
DECIMAL_ONE = 10 ** DECIMAL_PLACES
# Ratio 1 as a Decimal; DECIMAL_ONE is the atomics scale
ONE = Decimal(1)
# Scale used by the debt market's own ratio helpers.
DECIMAL_FRACTIONAL = 10 ** 9
UINT128_MAX = 2 ** 128 - 1

_CTX = Context(prec=200, rounding=ROUND_FLOOR)

RatioLike = Union[Decimal, int, str]


def to_decimal(value: RatioLike) -> Decimal:
    """Coerce config values (str/int/Decimal) into a Decimal ratio."""
    if isinstance(value, float):
        value = str(value)
    return from_atomics(atomics(Decimal(value)))


def atomics(value: RatioLike) -> int:
    """Return floor(value * 10**18)."""
    scaled = _CTX.multiply(Decimal(value), Decimal(DECIMAL_ONE))
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def from_atomics(value: int) -> Decimal:
    return Decimal(value).scaleb(-DECIMAL_PLACES, _CTX)


def from_ratio(numerator: int, denominator: int) -> Decimal:
    """Ratio numerator/denominator floored to 18 decimal places."""
    if denominator == 0:
        raise ZeroDivisionError("from_ratio denominator must not be zero")
    return from_atomics(numerator * DECIMAL_ONE // denominator)


def mul_floor(amount: int, ratio: RatioLike) -> int:
    """Integer amount times ratio, floored."""
    return amount * atomics(ratio) // DECIMAL_ONE


def div_floor(amount: int, ratio: RatioLike) -> int:
    """Integer amount divided by ratio, floored."""
    return amount * DECIMAL_ONE // atomics(ratio)


def multiply_ratio(amount: int, numerator: int, denominator: int) -> int:
    """floor(amount * numerator / denominator) on full-width integers."""
    return amount * numerator // denominator


def decimal_add(a: RatioLike, b: RatioLike) -> Decimal:
    return from_atomics(atomics(a) + atomics(b))


def decimal_sub(a: RatioLike, b: RatioLike) -> Decimal:
    return from_atomics(atomics(a) - atomics(b))


def decimal_mul(a: RatioLike, b: RatioLike) -> Decimal:
    return from_atomics(atomics(a) * atomics(b) // DECIMAL_ONE)


def midpoint(low: RatioLike, high: RatioLike) -> Decimal:
    return from_atomics((atomics(low) + atomics(high)) // 2)


def reverse_decimal(value: RatioLike) -> Decimal:
    """1 / value, computed as FRACTIONAL / floor(value * FRACTIONAL)."""
    return from_ratio(DECIMAL_FRACTIONAL, mul_floor(DECIMAL_FRACTIONAL, value))


def decimal_division(a: RatioLike, b: RatioLike) -> Decimal:
    """a / b with both operands truncated to 9 decimal places first."""
    return from_ratio(mul_floor(DECIMAL_FRACTIONAL, a), mul_floor(DECIMAL_FRACTIONAL, b))


def decimal_multiplication(a: RatioLike, b: RatioLike) -> Decimal:
    """a * b, truncating a to 9 decimal places first."""
    return from_ratio(mul_floor(mul_floor(DECIMAL_FRACTIONAL, a), b), DECIMAL_FRACTIONAL)


def isqrt(value: int) -> int:
    return math.isqrt(value)
