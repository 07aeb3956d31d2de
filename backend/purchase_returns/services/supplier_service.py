# Overview: Service-layer operations for suppliers; encapsulates business logic and database work.

"""
Supplier Service

Suppliers carry a running balance that purchase returns move: filing a
purchase return adds its total, editing or deleting it reverses that.
Balance writes are version-checked (Supplier.version_id) and retried on a
stale read, so two returns saved at once cannot lose each other's delta.
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Supplier
from ..money import ZERO, round_amount, to_decimal
from ..validation import ValidationError, require_text
from .concurrency import run_with_retry, store_operation


class SupplierNotFoundError(Exception):
    """Raised when a supplier is not found."""
    pass


@store_operation
def create_supplier(*, name: str, city: str | None = None, balance: Decimal = ZERO) -> Supplier:
    """
    Create a new supplier.

    Raises:
        ValidationError: If name is blank
    """
    name = require_text(name, "Supplier name is required")
    supplier = Supplier(name=name, city=city, balance=round_amount(to_decimal(balance)))
    db.session.add(supplier)
    db.session.commit()
    return supplier


def get_supplier(supplier_id: int) -> Supplier | None:
    """Get supplier by ID."""
    return db.session.get(Supplier, supplier_id)


@store_operation
def adjust_supplier_balance(supplier_id: int, delta: Decimal) -> Decimal | None:
    """
    Add `delta` to a supplier's balance (rounded to 2 dp).

    Args:
        supplier_id: Supplier to adjust
        delta: Signed amount; zero is a no-op

    Returns:
        The new balance, or None when nothing was written

    Raises:
        SupplierNotFoundError: If the supplier does not exist
        StoreError: If the write fails after retries
    """
    delta = to_decimal(delta)
    if not delta:
        return None

    def _apply():
        supplier = db.session.get(Supplier, supplier_id)
        if supplier is None:
            raise SupplierNotFoundError(f"Supplier {supplier_id} not found")
        supplier.balance = round_amount(to_decimal(supplier.balance) + delta)
        db.session.commit()
        return to_decimal(supplier.balance)

    return run_with_retry(_apply)


def require_supplier(supplier_id: int) -> Supplier:
    supplier = get_supplier(supplier_id)
    if supplier is None:
        raise ValidationError(f"Supplier {supplier_id} not found")
    return supplier
