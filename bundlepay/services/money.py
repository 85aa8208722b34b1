"""Decimal money helpers: 2-place normalisation and gateway minor units."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """
    Normalise a number or numeric string to a 2-decimal Decimal.

    Floats go through str() first so 25.1 becomes 25.10, not
    25.0999999...

    Raises:
        ValueError: value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Major currency units -> integer minor units (x100)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(minor) -> Decimal:
    """Integer minor units -> 2-decimal major units (/100)."""
    return to_money(Decimal(int(minor)) / 100)
