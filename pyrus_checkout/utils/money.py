"""Currency arithmetic utilities"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any


def to_decimal(value: Any) -> Decimal:
    """Coerce builder/JSON numbers to Decimal without float artifacts"""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(amount: Decimal) -> Decimal:
    """Round to the nearest whole currency unit, halves away from zero"""
    return amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer cents"""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
