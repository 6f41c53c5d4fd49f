"""Model-level validation utilities for data integrity.

Reusable validators that enforce business rules at the ORM level, so
invalid money or configuration values never reach the database regardless
of which route or service writes them.
"""

import re
from decimal import Decimal

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def non_negative(key: str, value):
    """Validate that a numeric value is >= 0."""
    if value is not None and _as_decimal(value) < 0:
        raise ValueError(f"{key} cannot be negative, got {value}")
    return value


def positive(key: str, value):
    """Validate that a numeric value is > 0."""
    if value is not None and _as_decimal(value) <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def percentage(key: str, value):
    """Validate that a value is between 0 and 100 inclusive."""
    if value is not None:
        v = _as_decimal(value)
        if v < 0 or v > 100:
            raise ValueError(f"{key} must be between 0 and 100, got {value}")
    return value


def in_range(key: str, value, low: int, high: int):
    if value is not None and not low <= int(value) <= high:
        raise ValueError(f"{key} must be between {low} and {high}, got {value}")
    return value


def payout_month(key: str, value):
    """Validate a ``YYYY-MM`` month string."""
    if value is not None and not MONTH_PATTERN.match(value):
        raise ValueError(f"{key} must be in YYYY-MM format, got {value!r}")
    return value


def min_length(key: str, value, length: int):
    if value is not None and len(value.strip()) < length:
        raise ValueError(f"{key} must be at least {length} characters")
    return value
