# Overview: Service-layer operations for purchase orders; runs return reconciliation against the store.

"""
Purchase Order Service

Reads an order and every completed return filed against it, rebuilds the
order's lines and financials (purchase_adjustment) and writes the result
back. Reconciliation always starts from what is in the store, never from a
delta, so running it again after any mutation (or twice in a row) is safe.

Orders are version-checked (PurchaseOrder.version_id): if another session
writes the order between our read and our write, the whole read-rebuild-
write cycle is retried.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from flask import current_app

from ..extensions import db
from ..models import PurchaseOrder, ReturnDocument
from ..money import ZERO, round_amount, to_decimal
from ..validation import ValidationError
from .concurrency import run_with_retry, store_operation
from .purchase_adjustment import (
    PurchaseOrderAdjustment,
    PurchaseOrderItemView,
    PurchaseOrderPayload,
    build_purchase_order_adjustment,
    describe_purchase_order_items,
)
from .purchase_payloads import build_order_payload, dump_purchase_order_payload, load_purchase_order_payload
from .return_aggregation import PurchaseReturnedItemSummary, build_returned_item_summaries, completed_only
from .return_payloads import ReturnRecord, record_from_document


class PurchaseOrderNotFoundError(Exception):
    """Raised when a purchase order is not found."""
    pass


@dataclass(frozen=True)
class PurchaseOrderSnapshot:
    """Pre-mutation copy of everything reconciliation may overwrite on an order."""
    purchase_order_id: int
    items_payload: Any
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal


# =============================================================================
# CREATION / QUERIES
# =============================================================================

@store_operation
def create_purchase_order(
    *,
    supplier_id: int | None,
    items: Iterable[dict],
    tax_rate: Decimal | None = None,
    tax_amount: Decimal | None = None,
    paid_amount: Decimal = ZERO,
    purchase_number: str | None = None,
    reference_number: str | None = None,
    purchase_date: datetime | None = None,
) -> PurchaseOrder:
    """
    Create a purchase order with a canonical item payload.

    Args:
        supplier_id: Supplier the order was placed with
        items: Dicts with id, description, quantity, unitPrice
        tax_rate: Percentage applied to the subtotal (wins over tax_amount)
        tax_amount: Flat tax amount when no rate is declared
        paid_amount: Amount already paid

    Returns:
        PurchaseOrder with subtotal/tax/total/remaining computed
    """
    paid = round_amount(to_decimal(paid_amount))
    if paid < 0:
        raise ValidationError("paid_amount must be >= 0")
    payload, subtotal, tax, total = build_order_payload(items, tax_rate=tax_rate, tax_amount=tax_amount)

    order = PurchaseOrder(
        supplier_id=supplier_id,
        purchase_number=purchase_number,
        reference_number=reference_number,
        purchase_date=purchase_date,
        items_payload=payload,
        subtotal=subtotal,
        tax_amount=tax,
        total_amount=total,
        paid_amount=paid,
        remaining_amount=max(ZERO, round_amount(total - paid)),
    )
    db.session.add(order)
    db.session.commit()
    return order


def get_purchase_order(purchase_order_id: int) -> PurchaseOrder | None:
    """Get purchase order by ID."""
    return db.session.get(PurchaseOrder, purchase_order_id)


def require_purchase_order(purchase_order_id: int) -> PurchaseOrder:
    order = get_purchase_order(purchase_order_id)
    if order is None:
        raise PurchaseOrderNotFoundError(f"Purchase order {purchase_order_id} not found")
    return order


def load_payload(order: PurchaseOrder) -> PurchaseOrderPayload:
    return load_purchase_order_payload(order.items_payload, fallback_prefix=f"po-{order.id}")


def completed_return_records(purchase_order_id: int, exclude_return_id: int | None = None) -> list[ReturnRecord]:
    """Completed returns currently tied to the order, as canonical records."""
    query = (
        db.session.query(ReturnDocument)
        .filter(ReturnDocument.purchase_order_id == purchase_order_id)
        .order_by(ReturnDocument.created_at, ReturnDocument.id)
    )
    if exclude_return_id is not None:
        query = query.filter(ReturnDocument.id != exclude_return_id)
    # Status is normalized in Python: older rows spell it "complete"/"completed"
    records = [record_from_document(doc) for doc in query.all()]
    return completed_only(records)


def get_returned_item_summaries(
    purchase_order_id: int,
    exclude_return_id: int | None = None,
) -> list[PurchaseReturnedItemSummary]:
    return build_returned_item_summaries(completed_return_records(purchase_order_id, exclude_return_id))


def describe_purchase_order(purchase_order_id: int, exclude_return_id: int | None = None) -> list[PurchaseOrderItemView]:
    """
    Order lines with returned and still-returnable quantities.

    exclude_return_id leaves one return out of the totals, which is what a
    form editing that return needs to show as available.
    """
    order = require_purchase_order(purchase_order_id)
    summaries = get_returned_item_summaries(purchase_order_id, exclude_return_id)
    return describe_purchase_order_items(load_payload(order), summaries)


# =============================================================================
# SNAPSHOT / RESTORE
# =============================================================================

def snapshot_purchase_order(purchase_order_id: int | None) -> Optional[PurchaseOrderSnapshot]:
    if purchase_order_id is None:
        return None
    order = get_purchase_order(purchase_order_id)
    if order is None:
        return None
    return PurchaseOrderSnapshot(
        purchase_order_id=order.id,
        items_payload=copy.deepcopy(order.items_payload),
        subtotal=to_decimal(order.subtotal),
        tax_amount=to_decimal(order.tax_amount),
        total_amount=to_decimal(order.total_amount),
        paid_amount=to_decimal(order.paid_amount),
        remaining_amount=to_decimal(order.remaining_amount),
    )


@store_operation
def restore_purchase_order(snapshot: PurchaseOrderSnapshot) -> None:
    """Put an order back exactly as it was when the snapshot was taken."""
    def _apply():
        order = require_purchase_order(snapshot.purchase_order_id)
        order.items_payload = copy.deepcopy(snapshot.items_payload)
        order.subtotal = snapshot.subtotal
        order.tax_amount = snapshot.tax_amount
        order.total_amount = snapshot.total_amount
        order.paid_amount = snapshot.paid_amount
        order.remaining_amount = snapshot.remaining_amount
        db.session.commit()

    run_with_retry(_apply)


# =============================================================================
# RECONCILIATION
# =============================================================================

@store_operation
def sync_purchase_order_returns(purchase_order_id: int) -> Optional[PurchaseOrderAdjustment]:
    """
    Re-run reconciliation for one order and write the result.

    Returns:
        The adjustment that was written, or None when there was nothing to
        adjust (no lines, no completed returns) or the order does not exist.
        None is a success: nothing needed writing.

    Raises:
        StoreError: If the order cannot be read or written after retries
    """
    def _apply():
        order = get_purchase_order(purchase_order_id)
        if order is None:
            current_app.logger.warning("Reconciliation skipped: purchase order %s not found", purchase_order_id)
            return None

        payload = load_payload(order)
        summaries = get_returned_item_summaries(purchase_order_id)
        paid_amount = to_decimal(order.paid_amount)
        adjustment = build_purchase_order_adjustment(payload, summaries, paid_amount)
        if adjustment is None:
            current_app.logger.debug("Reconciliation skipped: purchase order %s has nothing to adjust", purchase_order_id)
            return None

        order.items_payload = dump_purchase_order_payload(payload, adjustment)
        order.subtotal = adjustment.subtotal
        order.tax_amount = adjustment.tax_amount
        order.total_amount = adjustment.total_amount
        order.remaining_amount = adjustment.remaining_amount
        db.session.commit()
        return adjustment

    return run_with_retry(_apply)


def sync_all_purchase_orders() -> dict[int, Optional[PurchaseOrderAdjustment]]:
    """Reconcile every order (maintenance)."""
    results = {}
    order_ids = [row.id for row in db.session.query(PurchaseOrder.id).order_by(PurchaseOrder.id).all()]
    for purchase_order_id in order_ids:
        results[purchase_order_id] = sync_purchase_order_returns(purchase_order_id)
    return results
