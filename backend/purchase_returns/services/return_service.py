# Overview: Service-layer operations for returns; validation, lifecycle and purchase-order sync.

"""
Return Processing Service

WHY: A purchase return changes more than its own row. The supplier's
balance moves by the return total, and once the return is COMPLETED the
purchase order it was filed against must stop billing for the returned
goods. This service applies a create/edit/status-change/delete and then
brings those other rows back in line.

DESIGN PRINCIPLES:
- Validate everything before the first write (ValidationError, nothing mutated)
- Reconcile purchase orders from scratch after every mutation (no deltas)
- Each write is a saga step with a compensating action; a failed mutation
  is rolled back step by step, and a rollback that itself fails is raised
  as CompensationFailure instead of being hidden
- Acting user and side-effect switches come in as Session / FeatureFlags

LIFECYCLE:
1. Create return (PENDING)
2. Approve or reject (PENDING -> APPROVED | REJECTED)
3. Complete (APPROVED -> COMPLETED); only now does it reduce order quantities
"""

from __future__ import annotations

import copy
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from flask import current_app

from ..context import FeatureFlags, Session
from ..extensions import db
from ..models import Expense, PurchaseOrder, ReturnDocument
from ..money import ZERO, round_amount, round_quantity
from ..time_utils import parse_iso_datetime
from ..validation import (
    ValidationError,
    optional_text,
    parse_flag,
    parse_non_negative,
    parse_optional_id,
    require_text,
)
from . import purchase_order_service, supplier_service
from .concurrency import store_operation
from .purchase_adjustment import available_quantities, describe_purchase_order_items
from .return_payloads import (
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_PENDING,
    RETURN_STATUS_REJECTED,
    RETURN_TYPE_EXPENSE,
    RETURN_TYPE_PURCHASE,
    ReturnItem,
    ReturnMetadata,
    ReturnRecord,
    dump_return_payload,
    is_known_status,
    normalize_return_type,
    normalize_search_value,
    normalize_status,
    record_from_document,
)
from .saga import Saga


class ReturnNotFoundError(Exception):
    """Raised when a return is not found."""
    pass


ALLOWED_STATUS_TRANSITIONS = {
    RETURN_STATUS_PENDING: {RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED},
    RETURN_STATUS_APPROVED: {RETURN_STATUS_COMPLETED},
    RETURN_STATUS_REJECTED: set(),
    RETURN_STATUS_COMPLETED: set(),
}

_EXPENSE_TYPE_ALIASES = {"expense", "expense_return"}
_PURCHASE_TYPE_ALIASES = {"purchase", "purchase_return", "purchase-order", "purchase_order", "po"}

# Columns a compensation has to put back
_DOCUMENT_FIELDS = (
    "return_type",
    "status",
    "reason",
    "items_payload",
    "refund_amount",
    "total_amount",
    "remaining_amount",
    "affects_inventory",
    "purchase_order_id",
    "expense_id",
    "supplier_id",
    "created_by_user_id",
    "updated_by_user_id",
)


# =============================================================================
# INPUT
# =============================================================================

@dataclass
class ReturnDraft:
    """
    User-entered return, before validation.

    amount is the pre-tax amount typed in by hand; it is only used when
    the return has no priced items (expense returns, or purchase returns
    entered as a lump sum).
    """
    type: str
    reason: Optional[str] = None
    notes: Optional[str] = None
    purchase_order_id: Optional[int] = None
    expense_id: Optional[int] = None
    is_manual: bool = False
    manual_reference: Optional[str] = None
    manual_date: Optional[str] = None
    manual_supplier_id: Optional[int] = None
    items: list[ReturnItem] = field(default_factory=list)
    amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    return_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any, return_id: int | None = None) -> "ReturnDraft":
        """Parse a JSON body; raises ValidationError on malformed values."""
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise ValidationError("items must be a list")
        return cls(
            type=parse_return_type(data.get("type")),
            reason=optional_text(data.get("reason")),
            notes=optional_text(data.get("notes")),
            purchase_order_id=parse_optional_id(data.get("purchase_order_id"), "purchase_order_id"),
            expense_id=parse_optional_id(data.get("expense_id"), "expense_id"),
            is_manual=parse_flag(data.get("is_manual"), "is_manual"),
            manual_reference=optional_text(data.get("manual_reference")),
            manual_date=optional_text(data.get("manual_date")),
            manual_supplier_id=parse_optional_id(data.get("manual_supplier_id"), "manual_supplier_id"),
            items=[_parse_draft_item(raw, index) for index, raw in enumerate(raw_items)],
            amount=parse_non_negative(data.get("amount"), "amount", default=ZERO),
            tax_amount=parse_non_negative(data.get("tax_amount"), "tax_amount", default=ZERO),
            return_id=return_id,
        )


def parse_return_type(value: Any) -> str:
    normalized = normalize_search_value(value)
    if not normalized:
        raise ValidationError("Return type is required")
    if normalized in _PURCHASE_TYPE_ALIASES:
        return RETURN_TYPE_PURCHASE
    if normalized in _EXPENSE_TYPE_ALIASES:
        return RETURN_TYPE_EXPENSE
    raise ValidationError(f"Unknown return type: {value}")


def parse_status(value: Any) -> str:
    if not is_known_status(value):
        raise ValidationError(f"Unknown return status: {value}")
    return normalize_status(value)


def _parse_draft_item(raw: Any, index: int) -> ReturnItem:
    if not isinstance(raw, dict):
        raise ValidationError(f"Item {index + 1} must be an object")
    label = f"Item {index + 1}"
    quantity = round_quantity(parse_non_negative(raw.get("quantity"), f"{label} quantity", default=ZERO))
    unit_price = parse_non_negative(
        raw.get("unitPrice", raw.get("unit_price")), f"{label} unit price", default=ZERO
    )
    original_quantity = raw.get("originalQuantity", raw.get("original_quantity"))
    source_item_id = optional_text(raw.get("sourceItemId", raw.get("source_item_id")))
    item_id = optional_text(raw.get("id")) or source_item_id or uuid.uuid4().hex
    return ReturnItem.build(
        id=item_id,
        description=optional_text(raw.get("description")) or label,
        quantity=quantity,
        unit_price=unit_price,
        original_quantity=(
            parse_non_negative(original_quantity, f"{label} original quantity")
            if original_quantity not in (None, "")
            else None
        ),
        source_item_id=source_item_id,
    )


# =============================================================================
# VALIDATION
# =============================================================================

@dataclass
class _PreparedReturn:
    values: dict
    return_type: str
    purchase_order_id: Optional[int]
    supplier_id: Optional[int]
    total_amount: Decimal


def _check_available_quantities(order: PurchaseOrder, items: list[ReturnItem], exclude_return_id: int | None) -> None:
    """Linked items must exist on the order and fit within what other completed returns left."""
    summaries = purchase_order_service.get_returned_item_summaries(order.id, exclude_return_id)
    views = describe_purchase_order_items(purchase_order_service.load_payload(order), summaries)
    available = available_quantities(views)

    requested: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for item in items:
        if item.source_item_id is None:
            continue
        if item.source_item_id not in available:
            raise ValidationError(f"Item {item.source_item_id} is not on purchase order {order.id}")
        requested[item.source_item_id] += item.quantity

    for source_id, quantity in requested.items():
        if quantity > available[source_id]:
            raise ValidationError(
                f"Cannot return {quantity} of item {source_id}; only {available[source_id]} remaining"
            )


def _prepare(draft: ReturnDraft, flags: FeatureFlags) -> _PreparedReturn:
    """Validate a draft and build the column values to write. Touches nothing."""
    order: PurchaseOrder | None = None
    expense: Expense | None = None
    supplier_id: int | None = None
    items = list(draft.items)

    if draft.type == RETURN_TYPE_PURCHASE:
        if draft.is_manual:
            require_text(draft.manual_reference, "Please enter the supplier invoice number")
            if draft.manual_supplier_id is None:
                raise ValidationError("Please select the supplier for this return")
            supplier_id = supplier_service.require_supplier(draft.manual_supplier_id).id
        else:
            if draft.purchase_order_id is None:
                raise ValidationError("Please select a purchase order")
            order = purchase_order_service.get_purchase_order(draft.purchase_order_id)
            if order is None:
                raise ValidationError(f"Purchase order {draft.purchase_order_id} not found")
            supplier_id = order.supplier_id
            if supplier_id is not None and flags.supplier_balance_sync:
                supplier_service.require_supplier(supplier_id)
    else:
        if draft.is_manual:
            require_text(draft.manual_reference, "Please enter the expense reference number")
        else:
            if draft.expense_id is None:
                raise ValidationError("Please select an expense")
            expense = db.session.get(Expense, draft.expense_id)
            if expense is None:
                raise ValidationError(f"Expense {draft.expense_id} not found")

    require_text(draft.reason, "Please select a reason")
    if draft.manual_date and parse_iso_datetime(draft.manual_date) is None:
        raise ValidationError("manual_date must be an ISO date (YYYY-MM-DD)")

    if order is None:
        # Without an order there is no line for a source id to point at
        for item in items:
            item.source_item_id = None
    else:
        _check_available_quantities(order, items, draft.return_id)

    items_subtotal = round_amount(sum((item.total for item in items), ZERO))
    if draft.type == RETURN_TYPE_PURCHASE and items_subtotal > 0:
        base_amount = items_subtotal
    else:
        base_amount = round_amount(draft.amount)
    total_amount = round_amount(base_amount + draft.tax_amount)
    if total_amount <= 0:
        raise ValidationError("Return amount must be greater than zero")

    metadata = ReturnMetadata(is_manual=draft.is_manual, source_type=draft.type)
    if draft.is_manual:
        metadata.manual_reference = optional_text(draft.manual_reference)
        metadata.manual_date = draft.manual_date
        if draft.type == RETURN_TYPE_PURCHASE:
            metadata.manual_supplier_id = draft.manual_supplier_id
        else:
            metadata.expense_reference = metadata.manual_reference
    elif expense is not None:
        metadata.expense_reference = expense.receipt_number or str(expense.id)

    values = {
        "return_type": draft.type,
        "reason": draft.reason,
        "items_payload": dump_return_payload(items, draft.notes, metadata),
        "refund_amount": base_amount,
        "total_amount": total_amount,
        "affects_inventory": draft.type == RETURN_TYPE_PURCHASE,
        "purchase_order_id": order.id if order is not None else None,
        "expense_id": expense.id if expense is not None else None,
        "supplier_id": supplier_id if draft.type == RETURN_TYPE_PURCHASE else None,
    }
    return _PreparedReturn(
        values=values,
        return_type=draft.type,
        purchase_order_id=values["purchase_order_id"],
        supplier_id=values["supplier_id"],
        total_amount=total_amount,
    )


# =============================================================================
# STORE WRITES (each one is a saga step or a compensation)
# =============================================================================

def _document_values(doc: ReturnDocument) -> dict:
    values = {name: getattr(doc, name) for name in _DOCUMENT_FIELDS}
    values["items_payload"] = copy.deepcopy(values["items_payload"])
    return values


@store_operation
def _insert_return_document(values: dict) -> int:
    doc = ReturnDocument(**values)
    db.session.add(doc)
    db.session.commit()
    return doc.id


@store_operation
def _update_return_document(return_id: int, values: dict) -> None:
    doc = _require_document(return_id)
    for name, value in values.items():
        setattr(doc, name, copy.deepcopy(value))
    db.session.commit()


@store_operation
def _delete_return_document(return_id: int) -> None:
    doc = db.session.get(ReturnDocument, return_id)
    if doc is None:
        return
    db.session.delete(doc)
    db.session.commit()


@store_operation
def _restore_return_document(return_id: int, created_at, values: dict) -> None:
    """Re-insert a deleted return under its original id."""
    doc = ReturnDocument(id=return_id, created_at=created_at, **copy.deepcopy(values))
    db.session.add(doc)
    db.session.commit()


def _require_document(return_id: int) -> ReturnDocument:
    doc = db.session.get(ReturnDocument, return_id)
    if doc is None:
        raise ReturnNotFoundError(f"Return {return_id} not found")
    return doc


# =============================================================================
# SAGA STEPS
# =============================================================================

def _add_supplier_step(saga: Saga, supplier_id: int | None, delta: Decimal, flags: FeatureFlags) -> None:
    if not flags.supplier_balance_sync or supplier_id is None or not delta:
        return
    if supplier_service.get_supplier(supplier_id) is None:
        current_app.logger.warning("%s: supplier %s no longer exists; balance left untouched", saga.name, supplier_id)
        return
    saga.add_step(
        f"supplier {supplier_id} balance {delta:+}",
        lambda: supplier_service.adjust_supplier_balance(supplier_id, delta),
        lambda: supplier_service.adjust_supplier_balance(supplier_id, -delta),
    )


def _add_sync_step(saga: Saga, purchase_order_id: int | None, snapshot, flags: FeatureFlags) -> None:
    if not flags.purchase_order_sync or purchase_order_id is None:
        return
    compensation = None
    if snapshot is not None:
        def compensation():
            return purchase_order_service.restore_purchase_order(snapshot)
    saga.add_step(
        f"reconcile purchase order {purchase_order_id}",
        lambda: purchase_order_service.sync_purchase_order_returns(purchase_order_id),
        compensation,
    )


# =============================================================================
# MUTATIONS
# =============================================================================

def submit_return(draft: ReturnDraft, *, session: Session, flags: FeatureFlags) -> ReturnRecord:
    """
    Create (draft.return_id is None) or edit a return, then sync supplier and order.

    A new return always starts PENDING; editing keeps the stored status
    (use change_return_status to move it).

    Returns:
        The saved return as a ReturnRecord

    Raises:
        ValidationError: Nothing was written
        ReturnNotFoundError: Editing an unknown return
        StoreError: A write failed and every completed step was rolled back
        CompensationFailure: A write failed and the rollback was incomplete
    """
    if draft.return_id is None:
        return _create_return(draft, session, flags)
    return _edit_return(draft, session, flags)


def _create_return(draft: ReturnDraft, session: Session, flags: FeatureFlags) -> ReturnRecord:
    prepared = _prepare(draft, flags)
    snapshot = purchase_order_service.snapshot_purchase_order(prepared.purchase_order_id)

    values = dict(prepared.values)
    values.update(status=RETURN_STATUS_PENDING, created_by_user_id=session.user_id)

    created: dict[str, int] = {}

    def _insert():
        created["id"] = _insert_return_document(values)
        return created["id"]

    saga = Saga("create return")
    saga.add_step("persist return", _insert, lambda: _delete_return_document(created["id"]))
    if prepared.return_type == RETURN_TYPE_PURCHASE:
        _add_supplier_step(saga, prepared.supplier_id, prepared.total_amount, flags)
    _add_sync_step(saga, prepared.purchase_order_id, snapshot, flags)
    saga.run()

    return get_return(created["id"])


def _edit_return(draft: ReturnDraft, session: Session, flags: FeatureFlags) -> ReturnRecord:
    return_id = draft.return_id
    doc = _require_document(return_id)
    previous_values = _document_values(doc)
    previous_type = normalize_return_type(doc.return_type)
    previous_purchase_id = doc.purchase_order_id
    previous_supplier_id = doc.supplier_id if previous_type == RETURN_TYPE_PURCHASE else None
    previous_total = doc.total_amount or ZERO

    prepared = _prepare(draft, flags)
    current_purchase_id = prepared.purchase_order_id
    snapshots = {
        purchase_order_id: purchase_order_service.snapshot_purchase_order(purchase_order_id)
        for purchase_order_id in (previous_purchase_id, current_purchase_id)
        if purchase_order_id is not None
    }

    values = dict(prepared.values)
    values["updated_by_user_id"] = session.user_id

    saga = Saga(f"update return {return_id}")
    saga.add_step(
        "persist return",
        lambda: _update_return_document(return_id, values),
        lambda: _update_return_document(return_id, previous_values),
    )
    _add_supplier_step(saga, previous_supplier_id, -previous_total, flags)
    if prepared.return_type == RETURN_TYPE_PURCHASE:
        _add_supplier_step(saga, prepared.supplier_id, prepared.total_amount, flags)
    if previous_purchase_id is not None and previous_purchase_id != current_purchase_id:
        _add_sync_step(saga, previous_purchase_id, snapshots.get(previous_purchase_id), flags)
    _add_sync_step(saga, current_purchase_id, snapshots.get(current_purchase_id), flags)
    saga.run()

    return get_return(return_id)


def change_return_status(return_id: int, status: Any, *, session: Session, flags: FeatureFlags) -> ReturnRecord:
    """
    Move a return through its lifecycle and re-sync its purchase order.

    Allowed: PENDING -> APPROVED | REJECTED, APPROVED -> COMPLETED.
    Supplier balances are not touched by a status change.

    Raises:
        ValidationError: Unknown status or transition not allowed
        ReturnNotFoundError: If return not found
        StoreError / CompensationFailure: As for submit_return
    """
    doc = _require_document(return_id)
    target = parse_status(status)
    current = normalize_status(doc.status)
    if target == current:
        raise ValidationError(f"Return {return_id} is already {current}")
    if target not in ALLOWED_STATUS_TRANSITIONS[current]:
        raise ValidationError(f"Cannot change return {return_id} from {current} to {target}")

    previous = {"status": doc.status, "updated_by_user_id": doc.updated_by_user_id}
    purchase_order_id = doc.purchase_order_id
    snapshot = purchase_order_service.snapshot_purchase_order(purchase_order_id)

    saga = Saga(f"change status of return {return_id}")
    saga.add_step(
        "persist status",
        lambda: _update_return_document(return_id, {"status": target, "updated_by_user_id": session.user_id}),
        lambda: _update_return_document(return_id, previous),
    )
    _add_sync_step(saga, purchase_order_id, snapshot, flags)
    saga.run()

    return get_return(return_id)


def delete_return(return_id: int, *, session: Session, flags: FeatureFlags) -> None:
    """
    Delete a return, reverse its supplier delta and re-sync its purchase order.

    Raises:
        ReturnNotFoundError: If return not found
        StoreError / CompensationFailure: As for submit_return
    """
    doc = _require_document(return_id)
    values = _document_values(doc)
    created_at = doc.created_at
    return_type = normalize_return_type(doc.return_type)
    purchase_order_id = doc.purchase_order_id
    snapshot = purchase_order_service.snapshot_purchase_order(purchase_order_id)

    saga = Saga(f"delete return {return_id}")
    saga.add_step(
        "delete return",
        lambda: _delete_return_document(return_id),
        lambda: _restore_return_document(return_id, created_at, values),
    )
    if return_type == RETURN_TYPE_PURCHASE:
        _add_supplier_step(saga, doc.supplier_id, -(doc.total_amount or ZERO), flags)
    _add_sync_step(saga, purchase_order_id, snapshot, flags)
    saga.run()


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> ReturnRecord:
    """Get return by ID as a canonical record."""
    return record_from_document(_require_document(return_id))


def list_returns(
    *,
    search: str | None = None,
    return_type: str | None = None,
    status: str | None = None,
) -> list[ReturnRecord]:
    """
    All returns, newest first.

    return_type / status accept any spelling ("all" or None means no filter);
    search matches any search token by substring.
    """
    docs = db.session.query(ReturnDocument).order_by(
        ReturnDocument.created_at.desc(), ReturnDocument.id.desc()
    ).all()
    records = [record_from_document(doc) for doc in docs]

    if return_type and normalize_search_value(return_type) != "all":
        wanted_type = parse_return_type(return_type)
        records = [record for record in records if record.type == wanted_type]
    if status and normalize_search_value(status) != "all":
        wanted_status = parse_status(status)
        records = [record for record in records if record.status == wanted_status]
    if search:
        records = [record for record in records if record.matches(search)]
    return records


def get_return_statistics() -> dict:
    """Counts and total amount across all returns (approved includes completed)."""
    records = list_returns()
    return {
        "total_returns": len(records),
        "pending_returns": sum(1 for record in records if record.status == RETURN_STATUS_PENDING),
        "approved_returns": sum(
            1 for record in records
            if record.status in (RETURN_STATUS_APPROVED, RETURN_STATUS_COMPLETED)
        ),
        "total_return_amount": round_amount(sum((record.total_amount for record in records), ZERO)),
    }
