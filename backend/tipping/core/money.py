"""Decimal helpers for currency amounts."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from tipping.core.config import settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert to Decimal via str() so floats keep their printed value."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a number: {value!r}") from e


def quantize(value: Number) -> Decimal:
    """Round half-up to 2 decimal places."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Number, currency: str = None) -> str:
    """``KES 1,234.50``"""
    return f"{currency or settings.currency} {quantize(amount):,.2f}"
