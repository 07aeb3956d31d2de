# Overview: Store-boundary adapter for purchase-order item payloads (read and write).

"""
Purchase-order payload adapter.

The purchasing screens have stored order items under many key spellings
(quantity/qty/item_quantity/count, unitPrice/unit_price/price/cost, ...),
camelCase next to snake_case, sometimes as a bare list. This module is the
only place that knows about them:

- load_purchase_order_payload: stored JSON -> PurchaseOrderPayload
- dump_purchase_order_payload: PurchaseOrderPayload + adjustment -> stored JSON

Written payloads keep every key the input had and add both spellings of
the reconciliation fields, so whichever consumer reads the row next finds
the names it expects.
"""

from __future__ import annotations

import copy
import json
from decimal import Decimal
from typing import Any, Iterable, Optional

from ..money import ZERO, round_amount, to_decimal, to_json_number
from .purchase_adjustment import (
    AdjustedLine,
    PurchaseOrderAdjustment,
    PurchaseOrderLine,
    PurchaseOrderPayload,
)


LINE_ID_KEYS = ("id", "item_id", "product_id", "material_id", "sku", "line_id")
DESCRIPTION_KEYS = ("description", "item_name", "name", "product_name")
# originalQuantity first: the engine writes it itself and it never shrinks
QUANTITY_KEYS = ("originalQuantity", "original_quantity", "quantity", "qty", "item_quantity", "count")
UNIT_PRICE_KEYS = ("unitPrice", "unit_price", "price", "cost", "unit_cost")
LINE_TOTAL_KEYS = ("total", "line_total")

BASE_SUBTOTAL_KEYS = ("original_subtotal", "subtotal", "sub_total")
BASE_TAX_KEYS = ("original_tax_amount", "tax_amount", "taxAmount")
TAX_RATE_KEYS = ("tax_rate", "taxRate")

RETURNED_KEYS = ("returned_items", "total_returned_amount", "totalReturnedAmount")

# Marks a line written only to keep a return visible; it was never ordered
RETURN_ONLY_KEY = "returnOnly"


def first_available(record: dict, keys: Iterable[str]) -> Any:
    """Value of the first key that is present and not None."""
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


def normalize_payload_object(raw: Any) -> dict:
    """Stored value -> shallow dict copy ({"items": [...]} for a bare list, {} when unreadable)."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    if isinstance(raw, list):
        return {"items": list(raw)}
    if isinstance(raw, dict):
        return dict(raw)
    return {}


def _load_line(raw_item: dict, index: int, fallback_prefix: str) -> PurchaseOrderLine:
    line_id = first_available(raw_item, LINE_ID_KEYS)
    if line_id is None or line_id == "":
        line_id = f"{fallback_prefix}-{index}"
    description = first_available(raw_item, DESCRIPTION_KEYS)
    if description is None:
        description = f"Item {index + 1}"

    quantity = to_decimal(first_available(raw_item, QUANTITY_KEYS))
    unit_price = to_decimal(first_available(raw_item, UNIT_PRICE_KEYS))
    # Before the first adjustment total is the ordered line total; afterwards
    # it is the remaining line total, so it is only trusted when nothing was returned yet
    if "originalQuantity" in raw_item or "original_quantity" in raw_item:
        line_total = round_amount(quantity * unit_price)
    else:
        line_total = to_decimal(first_available(raw_item, LINE_TOTAL_KEYS), default=None)
        if line_total is None:
            line_total = round_amount(quantity * unit_price)

    return PurchaseOrderLine(
        id=str(line_id),
        description=str(description),
        quantity=quantity,
        unit_price=unit_price,
        line_total=line_total,
        raw=raw_item,
    )


def load_purchase_order_payload(raw: Any, fallback_prefix: str = "purchase-item") -> PurchaseOrderPayload:
    """
    Stored purchase-order payload -> PurchaseOrderPayload.

    Args:
        raw: JSON string, bare item list, or object with `items`
        fallback_prefix: Line ids for items without any id key become
            "<prefix>-<index>" (callers pass the order id)
    """
    normalized = normalize_payload_object(raw)
    raw_items = normalized.get("items")
    if not isinstance(raw_items, list):
        raw_items = []

    # Return-only lines are rebuilt from the summaries on every run
    lines = [
        _load_line(raw_item, index, fallback_prefix)
        for index, raw_item in enumerate(raw_items)
        if isinstance(raw_item, dict) and not raw_item.get(RETURN_ONLY_KEY)
    ]

    base_subtotal = to_decimal(first_available(normalized, BASE_SUBTOTAL_KEYS), default=None)
    if base_subtotal is None:
        base_subtotal = sum((line.line_total for line in lines), ZERO)

    return PurchaseOrderPayload(
        lines=lines,
        base_subtotal=base_subtotal,
        base_tax_amount=to_decimal(first_available(normalized, BASE_TAX_KEYS)),
        tax_rate=to_decimal(first_available(normalized, TAX_RATE_KEYS), default=None),
        raw=normalized,
    )


# =============================================================================
# WRITING
# =============================================================================

def _dump_line(adjusted: AdjustedLine) -> dict:
    if adjusted.line is not None:
        source = adjusted.line.raw
        item = copy.deepcopy(source)
    else:
        source = {}
        item = {"id": adjusted.source_item_id, "description": adjusted.description}

    returned_amount = to_json_number(round_amount(adjusted.returned_amount))
    item.update(
        {
            "quantity": to_json_number(adjusted.original_quantity),
            "originalQuantity": to_json_number(adjusted.original_quantity),
            "remainingQuantity": to_json_number(adjusted.remaining_quantity),
            "returnedQuantity": to_json_number(adjusted.returned_quantity),
            "returnedAmount": returned_amount,
            "unitPrice": to_json_number(adjusted.unit_price),
            "total": to_json_number(adjusted.line_total),
            "original_quantity": to_json_number(adjusted.original_quantity),
            "remaining_quantity": to_json_number(adjusted.remaining_quantity),
            "returned_quantity": to_json_number(adjusted.returned_quantity),
            "returned_amount": returned_amount,
        }
    )
    if adjusted.synthesized:
        item.update(
            {
                "quantity": 0,
                "originalQuantity": 0,
                "original_quantity": 0,
                RETURN_ONLY_KEY: True,
            }
        )
    if "unit_price" in source:
        item["unit_price"] = to_json_number(adjusted.unit_price)
    if "line_total" in source:
        item["line_total"] = to_json_number(adjusted.line_total)
    return item


def _write_key_variants(target: dict, source: dict, primary: str, alternate: str, value: Optional[Decimal]) -> None:
    """
    Write `value` under whichever spellings the source used.

    primary is written when it existed or when alternate did not;
    alternate only when it existed.
    """
    number = to_json_number(value)
    if primary in source or alternate not in source:
        target[primary] = number
    if alternate in source:
        target[alternate] = number


def dump_purchase_order_payload(payload: PurchaseOrderPayload, adjustment: PurchaseOrderAdjustment) -> dict:
    """Adjusted order -> stored JSON object (input keys preserved)."""
    source = payload.raw
    result = copy.deepcopy(source)
    result["items"] = [_dump_line(line) for line in adjustment.lines]

    if adjustment.summaries:
        total_returned = to_json_number(adjustment.total_returned_amount)
        result["returned_items"] = [summary.to_dict() for summary in adjustment.summaries]
        result["total_returned_amount"] = total_returned
        result["totalReturnedAmount"] = total_returned
    else:
        for key in RETURNED_KEYS:
            result.pop(key, None)

    _write_key_variants(result, source, "subtotal", "sub_total", adjustment.subtotal)
    _write_key_variants(result, source, "tax_amount", "taxAmount", adjustment.tax_amount)
    _write_key_variants(result, source, "total_amount", "totalAmount", adjustment.total_amount)
    if adjustment.tax_rate is not None:
        _write_key_variants(result, source, "tax_rate", "taxRate", adjustment.tax_rate)

    # Base figures are pinned on the first adjustment so the inferred tax
    # ratio survives the subtotal dropping to zero
    result.setdefault("original_subtotal", to_json_number(adjustment.base_subtotal))
    result.setdefault("original_tax_amount", to_json_number(adjustment.base_tax_amount))
    return result


def build_order_payload(
    items: Iterable[dict],
    *,
    tax_rate: Optional[Decimal] = None,
    tax_amount: Optional[Decimal] = None,
) -> tuple[dict, Decimal, Decimal, Decimal]:
    """
    Fresh payload for a new order: (payload, subtotal, tax_amount, total_amount).

    Items are dicts with id, description, quantity, unitPrice.
    tax_rate wins over tax_amount when both are given.
    """
    stored_items = []
    subtotal = ZERO
    for item in items:
        quantity = to_decimal(item.get("quantity"))
        unit_price = to_decimal(first_available(item, UNIT_PRICE_KEYS))
        line_total = round_amount(quantity * unit_price)
        subtotal += line_total
        stored = dict(item)
        stored.update(
            {
                "quantity": to_json_number(quantity),
                "unitPrice": to_json_number(unit_price),
                "total": to_json_number(line_total),
            }
        )
        stored_items.append(stored)

    subtotal = round_amount(subtotal)
    if tax_rate is not None:
        tax = round_amount(subtotal * tax_rate / 100)
    else:
        tax = round_amount(tax_amount or ZERO)
    total = round_amount(subtotal + tax)

    payload = {
        "items": stored_items,
        "subtotal": to_json_number(subtotal),
        "tax_amount": to_json_number(tax),
        "total_amount": to_json_number(total),
    }
    if tax_rate is not None:
        payload["tax_rate"] = to_json_number(tax_rate)
    return payload, subtotal, tax, total
