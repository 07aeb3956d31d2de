# Overview: Store-boundary adapter for return rows; turns stored JSON into canonical return records.

"""
Return Record Normalizer

WHY: The returns table has been written by several generations of clients.
Item payloads show up as a bare list, as {"items", "notes", "metadata"},
as a JSON string, and with legacy key names (itemName, price,
returnedQuantity). Everything downstream (aggregation, adjustment, the API)
works on the typed records defined here and never on raw maps.

DESIGN PRINCIPLES:
- Availability over strictness: unreadable payloads become empty payloads
- Item totals are always recomputed from quantity x unit price
- Status and type spellings are folded into one canonical vocabulary
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from ..money import ZERO, round_amount, to_decimal, to_json_number
from ..time_utils import to_utc_z


# =============================================================================
# CANONICAL VOCABULARY
# =============================================================================

RETURN_STATUS_PENDING = "PENDING"
RETURN_STATUS_APPROVED = "APPROVED"
RETURN_STATUS_REJECTED = "REJECTED"
RETURN_STATUS_COMPLETED = "COMPLETED"

RETURN_TYPE_PURCHASE = "PURCHASE"
RETURN_TYPE_EXPENSE = "EXPENSE"

_STATUS_ALIASES = {
    "pending": RETURN_STATUS_PENDING,
    "approved": RETURN_STATUS_APPROVED,
    "rejected": RETURN_STATUS_REJECTED,
    "completed": RETURN_STATUS_COMPLETED,
    "complete": RETURN_STATUS_COMPLETED,
}

_PURCHASE_TYPE_ALIASES = {"purchase", "purchase_return", "purchase-order", "purchase_order", "po"}


def normalize_search_value(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).lower().split())


def normalize_status(value: Any) -> str:
    """Any stored status spelling -> canonical constant (unknown means PENDING)."""
    return _STATUS_ALIASES.get(normalize_search_value(value), RETURN_STATUS_PENDING)


def is_known_status(value: Any) -> bool:
    return normalize_search_value(value) in _STATUS_ALIASES


def normalize_return_type(value: Any) -> str:
    """Any stored type spelling -> canonical constant (unknown means EXPENSE)."""
    if normalize_search_value(value) in _PURCHASE_TYPE_ALIASES:
        return RETURN_TYPE_PURCHASE
    return RETURN_TYPE_EXPENSE


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class ReturnItem:
    """
    One returned line.

    source_item_id is set when the line reduces a specific purchase-order
    line; manual lines (free text, no order line) leave it None.
    """
    id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    original_quantity: Optional[Decimal] = None
    source_item_id: Optional[str] = None

    @classmethod
    def build(
        cls,
        *,
        id: str,
        description: str,
        quantity: Decimal,
        unit_price: Decimal,
        original_quantity: Optional[Decimal] = None,
        source_item_id: Optional[str] = None,
    ) -> "ReturnItem":
        return cls(
            id=id,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            total=round_amount(quantity * unit_price),
            original_quantity=original_quantity,
            source_item_id=source_item_id,
        )

    def to_dict(self) -> dict:
        # sourceItemId is always written (None for manual lines) so rows in
        # this format are never mistaken for legacy rows on the way back in
        return {
            "id": self.id,
            "sourceItemId": self.source_item_id,
            "description": self.description,
            "quantity": to_json_number(self.quantity),
            "unitPrice": to_json_number(self.unit_price),
            "total": to_json_number(self.total),
            "originalQuantity": to_json_number(self.original_quantity),
        }


@dataclass
class ReturnMetadata:
    is_manual: bool = False
    manual_reference: Optional[str] = None
    manual_date: Optional[str] = None
    manual_supplier_id: Optional[int] = None
    source_type: Optional[str] = None
    expense_reference: Optional[str] = None

    def has_content(self) -> bool:
        return bool(
            self.is_manual
            or self.manual_reference
            or self.manual_date
            or self.manual_supplier_id
            or self.expense_reference
        )

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["ReturnMetadata"]:
        if not isinstance(raw, dict):
            return None
        supplier_id = raw.get("manualSupplierId", raw.get("manual_supplier_id"))
        try:
            supplier_id = int(supplier_id) if supplier_id not in (None, "") else None
        except (TypeError, ValueError):
            supplier_id = None
        source_type = raw.get("sourceType")
        return cls(
            is_manual=bool(raw.get("isManual", raw.get("is_manual", False))),
            manual_reference=raw.get("manualReference") or raw.get("manual_reference") or None,
            manual_date=raw.get("manualDate") or raw.get("manual_date") or None,
            manual_supplier_id=supplier_id,
            source_type=normalize_return_type(source_type) if source_type else None,
            expense_reference=raw.get("expenseReference") or raw.get("expense_reference") or None,
        )

    def to_dict(self) -> dict:
        return {
            "isManual": self.is_manual,
            "manualReference": self.manual_reference,
            "manualDate": self.manual_date,
            "manualSupplierId": self.manual_supplier_id,
            "sourceType": self.source_type,
            "expenseReference": self.expense_reference,
        }


@dataclass
class ReturnPayload:
    items: list[ReturnItem] = field(default_factory=list)
    notes: Optional[str] = None
    metadata: Optional[ReturnMetadata] = None


@dataclass
class ReturnRecord:
    """Canonical view of one stored return row."""
    id: int
    created_at: Optional[datetime]
    type: str
    status: str
    reason: str
    total_amount: Decimal
    base_amount: Decimal
    tax_amount: Decimal
    remaining_amount: Decimal
    items: list[ReturnItem] = field(default_factory=list)
    notes: Optional[str] = None
    purchase_order_id: Optional[int] = None
    supplier_id: Optional[int] = None
    expense_id: Optional[int] = None
    is_manual: bool = False
    manual_reference: Optional[str] = None
    manual_date: Optional[str] = None
    manual_supplier_id: Optional[int] = None
    purchase_number: Optional[str] = None
    expense_number: Optional[str] = None
    supplier_name: Optional[str] = None
    search_tokens: list[str] = field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.status == RETURN_STATUS_COMPLETED

    def matches(self, query: str) -> bool:
        needle = normalize_search_value(query)
        if not needle:
            return True
        return any(needle in token for token in self.search_tokens)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": to_utc_z(self.created_at),
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "notes": self.notes,
            "purchase_order_id": self.purchase_order_id,
            "purchase_number": self.purchase_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "expense_id": self.expense_id,
            "expense_number": self.expense_number,
            "is_manual": self.is_manual,
            "manual_reference": self.manual_reference,
            "manual_date": self.manual_date,
            "manual_supplier_id": self.manual_supplier_id,
            "total_amount": to_json_number(self.total_amount),
            "base_amount": to_json_number(self.base_amount),
            "tax_amount": to_json_number(self.tax_amount),
            "remaining_amount": to_json_number(self.remaining_amount),
            "items": [item.to_dict() for item in self.items],
        }


# =============================================================================
# PARSING
# =============================================================================

def _load_json(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return None
    return raw


def _first_present(entry: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = entry.get(key)
        if value is not None:
            return value
    return None


def _parse_item(entry: dict, index: int, linked_to_purchase: bool) -> ReturnItem:
    description = _first_present(entry, ("description", "itemName", "name"))
    if description is None:
        description = f"Item {index + 1}"

    quantity = to_decimal(_first_present(entry, ("quantity", "returnedQuantity")))
    unit_price = to_decimal(_first_present(entry, ("unitPrice", "price")))
    original_quantity = to_decimal(
        _first_present(entry, ("originalQuantity", "original_quantity")), default=None
    )

    raw_id = entry.get("id")
    item_id = str(raw_id) if raw_id not in (None, "") else uuid.uuid4().hex

    source_id = _first_present(entry, ("sourceItemId", "source_item_id"))
    is_legacy = "sourceItemId" not in entry and "source_item_id" not in entry
    if source_id is None and is_legacy and linked_to_purchase and raw_id not in (None, ""):
        # Legacy rows stored the purchase-order line id as the item id
        source_id = raw_id
    source_item_id = str(source_id) if source_id not in (None, "") else None

    return ReturnItem.build(
        id=item_id,
        description=str(description),
        quantity=quantity,
        unit_price=unit_price,
        original_quantity=original_quantity,
        source_item_id=source_item_id,
    )


def parse_return_payload(raw: Any, *, linked_to_purchase: bool = False) -> ReturnPayload:
    """
    Stored return payload -> ReturnPayload.

    Args:
        raw: JSON string, bare list of items, or {"items", "notes", "metadata"}
        linked_to_purchase: the row points at a purchase order, so legacy
            items without an explicit sourceItemId use their id as one

    Returns:
        ReturnPayload; empty (notes/metadata None) when raw cannot be read
    """
    parsed = _load_json(raw)
    if not parsed:
        return ReturnPayload()

    notes = None
    metadata = None
    items_source = parsed
    if isinstance(parsed, dict):
        items_source = parsed.get("items")
        raw_metadata = parsed.get("metadata")
        metadata = ReturnMetadata.from_dict(raw_metadata)
        notes = parsed.get("notes")
        if notes is None and isinstance(raw_metadata, dict):
            notes = raw_metadata.get("notes")

    if not isinstance(items_source, list):
        return ReturnPayload(items=[], notes=notes, metadata=metadata)

    items = [
        _parse_item(entry, index, linked_to_purchase)
        for index, entry in enumerate(items_source)
        if isinstance(entry, dict)
    ]
    return ReturnPayload(items=items, notes=notes, metadata=metadata)


def dump_return_payload(
    items: list[ReturnItem],
    notes: Optional[str],
    metadata: Optional[ReturnMetadata],
) -> Optional[dict]:
    """Canonical store format; None when there is nothing worth storing."""
    has_metadata = metadata is not None and metadata.has_content()
    if not items and not notes and not has_metadata:
        return None
    return {
        "items": [item.to_dict() for item in items],
        "notes": notes or None,
        "metadata": (metadata or ReturnMetadata()).to_dict(),
    }


# =============================================================================
# DISPLAY IDENTIFIERS
# =============================================================================

def format_purchase_identifier(order, fallback_id=None) -> Optional[str]:
    """Invoice number -> reference number -> PUR-<year>-<id> -> PUR-<id>."""
    if order is None:
        return str(fallback_id) if fallback_id is not None else None
    invoice_number = (order.purchase_number or "").strip()
    if invoice_number:
        return invoice_number.upper()
    reference = (order.reference_number or "").strip()
    if reference:
        return reference.upper()
    if order.purchase_date:
        return f"PUR-{order.purchase_date.year}-{order.id:04d}"
    return f"PUR-{order.id:06d}"


def format_expense_identifier(expense, fallback=None) -> Optional[str]:
    """Receipt number -> description -> EXP-<id>."""
    if expense is None:
        return str(fallback) if fallback is not None else None
    receipt = (expense.receipt_number or "").strip()
    if receipt:
        return receipt.upper()
    description = (expense.description or "").strip()
    if description:
        return description
    return f"EXP-{expense.id:06d}"


def build_search_tokens(*values: Any) -> list[str]:
    tokens = [normalize_search_value(value) for value in values]
    return [token for token in tokens if token]


# =============================================================================
# ROW MAPPING
# =============================================================================

def record_from_document(doc, *, supplier_name: Optional[str] = None) -> ReturnRecord:
    """
    ReturnDocument row -> ReturnRecord.

    supplier_name overrides the row's supplier (callers resolve the manual
    supplier named in metadata, which has no relationship on the row).
    """
    payload = parse_return_payload(
        doc.items_payload,
        linked_to_purchase=doc.purchase_order_id is not None,
    )
    metadata = payload.metadata or ReturnMetadata()

    total_amount = to_decimal(doc.total_amount)
    base_source = doc.refund_amount if doc.refund_amount is not None else doc.total_amount
    base_amount = max(to_decimal(base_source), ZERO)
    tax_amount = max(total_amount - to_decimal(doc.refund_amount), ZERO)
    remaining_source = doc.remaining_amount if doc.remaining_amount is not None else doc.total_amount
    remaining_amount = max(to_decimal(remaining_source), ZERO)

    if supplier_name is None and doc.supplier is not None:
        supplier_name = doc.supplier.name

    return_type = normalize_return_type(doc.return_type)
    manual_reference = metadata.manual_reference or metadata.expense_reference
    purchase_number = format_purchase_identifier(doc.purchase_order, doc.purchase_order_id)
    expense_number = metadata.expense_reference or format_expense_identifier(doc.expense, doc.expense_id)

    return ReturnRecord(
        id=doc.id,
        created_at=doc.created_at,
        type=return_type,
        status=normalize_status(doc.status),
        reason=doc.reason or "",
        notes=payload.notes,
        purchase_order_id=doc.purchase_order_id,
        supplier_id=metadata.manual_supplier_id or doc.supplier_id,
        expense_id=doc.expense_id,
        is_manual=metadata.is_manual,
        manual_reference=manual_reference,
        manual_date=metadata.manual_date,
        manual_supplier_id=metadata.manual_supplier_id,
        total_amount=total_amount,
        base_amount=base_amount,
        tax_amount=tax_amount,
        remaining_amount=remaining_amount,
        items=payload.items,
        purchase_number=purchase_number,
        expense_number=expense_number,
        supplier_name=supplier_name,
        search_tokens=build_search_tokens(
            doc.id,
            purchase_number,
            manual_reference,
            supplier_name,
            expense_number,
            metadata.expense_reference,
            doc.reason,
        ),
    )
