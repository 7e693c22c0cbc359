"""Money helpers.

Internal storage unit: Decimal with two places (e.g. Decimal("12.50")).
Gateway unit: integer cents (smallest currency unit, 100 cents = 1.00).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENTS_PER_UNIT: int = 100
TWO_PLACES = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Coerce to a two-place Decimal (round half-up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_cents(value: Number) -> int:
    """Convert an amount to integer cents. 1.00 = 100 cents."""
    return int(to_money(value) * CENTS_PER_UNIT)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal."""
    return to_money(Decimal(cents) / CENTS_PER_UNIT)
