"""
Decimal helpers shared by the reconciliation core and the store adapters.

Stored JSON carries plain numbers (sometimes strings, sometimes junk from
older clients). Everything is converted to Decimal on the way in and back
to a JSON number on the way out.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

ZERO = Decimal("0")

AMOUNT_DIGITS = 2
QUANTITY_DIGITS = 3


def to_decimal(value: Any, default: Decimal | None = ZERO) -> Decimal | None:
    """Lenient numeric coercion: None, blanks, bools and non-finite values give `default`."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return default
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            return default
    else:
        return default
    if not result.is_finite():
        return default
    return result


def round_to(value: Decimal, digits: int = AMOUNT_DIGITS) -> Decimal:
    """Half-up rounding to a fixed number of decimal places."""
    exponent = Decimal(1).scaleb(-digits)
    return value.quantize(exponent, rounding=ROUND_HALF_UP)


def round_amount(value: Decimal) -> Decimal:
    return round_to(value, AMOUNT_DIGITS)


def round_quantity(value: Decimal) -> Decimal:
    return round_to(value, QUANTITY_DIGITS)


def to_json_number(value: Decimal | None) -> int | float | None:
    """Decimal -> JSON number, keeping integral values as ints."""
    if value is None:
        return None
    if value == value.to_integral_value():
        return int(value)
    return float(value)
