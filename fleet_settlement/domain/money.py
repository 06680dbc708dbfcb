"""Decimal helpers for euro amounts"""

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def round2(value) -> Decimal:
    """Round to cents, half away from zero"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    return int(round2(value) * 100)


def from_cents(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / 100).quantize(CENT)


def non_negative(value: Decimal) -> Decimal:
    return value if value > 0 else Decimal("0.00")
