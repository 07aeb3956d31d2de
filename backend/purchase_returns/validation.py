from __future__ import annotations

from decimal import Decimal
from typing import Any

from .money import to_decimal


# Maximum currency amount accepted from clients: 9,999,999,999.99
# Matches Numeric(12, 2) storage.
MAX_AMOUNT = Decimal("9999999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


def require_text(value: Any, message: str) -> str:
    """Return the stripped string or raise with `message` if it is blank."""
    if value is None:
        raise ValidationError(message)
    text = str(value).strip()
    if not text:
        raise ValidationError(message)
    return text


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_non_negative(value: Any, field: str, *, default: Decimal | None = None) -> Decimal:
    """
    Strict numeric input for amounts and quantities entered by a user.

    - None / "" -> default (error if no default)
    - bools, non-numeric strings, NaN/Infinity -> error
    - negative values -> error
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is None:
            raise ValidationError(f"{field} is required")
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    parsed = to_decimal(value, default=None)
    if parsed is None:
        raise ValidationError(f"{field} must be a number")
    if parsed < 0:
        raise ValidationError(f"{field} must be >= 0")
    if parsed > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}")
    return parsed


def parse_optional_id(value: Any, field: str) -> int | None:
    """Integer primary keys from JSON or query strings; blanks mean None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def parse_flag(value: Any, field: str, *, default: bool = False) -> bool:
    """JSON booleans only; a missing or null value gives the default."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{field} must be true or false")
