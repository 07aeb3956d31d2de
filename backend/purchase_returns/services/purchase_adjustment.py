# Overview: Recomputes purchase-order quantities and financials from return summaries; pure functions.

"""
Purchase-Order Adjustment Builder

WHY: A purchase order's billable amount must follow the goods that were
actually kept. Every time the set of completed returns against an order
changes, the order's lines, subtotal, tax, total and remaining balance are
rebuilt from scratch out of the order's own lines and the returned-item
summaries. Nothing is applied incrementally, so there is no delta to
compensate when a return is edited or deleted.

ALGORITHM:
1. Per line: remaining = max(0, ordered - returned); subtotal += round(remaining x price, 2)
2. Summaries with no matching line get a zero-remaining line (amount stays visible)
3. Tax: declared rate -> proportional to the base tax/subtotal ratio -> base tax unchanged
4. total = round(subtotal + tax, 2); remaining = max(0, round(total - paid, 2))

Paid amount is an input only; payment history is never altered here.

Only canonical records are handled in this module. Reading and writing the
stored JSON (with its many key spellings) lives in purchase_payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from ..money import ZERO, round_amount, to_json_number
from .return_aggregation import PurchaseReturnedItemSummary, summaries_by_source


# =============================================================================
# CANONICAL INPUTS
# =============================================================================

@dataclass
class PurchaseOrderLine:
    """
    One ordered line.

    quantity is the ORIGINAL ordered quantity and never changes once the
    order is placed. raw carries the stored item untouched so the writer can
    preserve keys this module does not know about.
    """
    id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    raw: dict = field(default_factory=dict, repr=False)


@dataclass
class PurchaseOrderPayload:
    """
    Canonical view of a purchase order's item payload.

    base_subtotal / base_tax_amount are the figures the tax ratio is inferred
    from; tax_rate is a percentage when the order declared one.
    """
    lines: list[PurchaseOrderLine] = field(default_factory=list)
    base_subtotal: Decimal = ZERO
    base_tax_amount: Decimal = ZERO
    tax_rate: Optional[Decimal] = None
    raw: dict = field(default_factory=dict, repr=False)


# =============================================================================
# OUTPUTS
# =============================================================================

@dataclass
class AdjustedLine:
    source_item_id: str
    description: str
    original_quantity: Decimal
    returned_quantity: Decimal
    remaining_quantity: Decimal
    returned_amount: Decimal
    unit_price: Decimal
    line_total: Decimal
    line: Optional[PurchaseOrderLine] = None

    @property
    def synthesized(self) -> bool:
        """True when the line only exists because a return references it."""
        return self.line is None


@dataclass
class PurchaseOrderAdjustment:
    lines: list[AdjustedLine]
    summaries: list[PurchaseReturnedItemSummary]
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    remaining_amount: Decimal
    total_returned_amount: Decimal
    tax_rate: Optional[Decimal]
    base_subtotal: Decimal
    base_tax_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": to_json_number(self.subtotal),
            "tax_amount": to_json_number(self.tax_amount),
            "total_amount": to_json_number(self.total_amount),
            "remaining_amount": to_json_number(self.remaining_amount),
            "total_returned_amount": to_json_number(self.total_returned_amount),
            "tax_rate": to_json_number(self.tax_rate),
            "lines": [
                {
                    "id": line.source_item_id,
                    "description": line.description,
                    "original_quantity": to_json_number(line.original_quantity),
                    "returned_quantity": to_json_number(line.returned_quantity),
                    "remaining_quantity": to_json_number(line.remaining_quantity),
                    "returned_amount": to_json_number(line.returned_amount),
                    "unit_price": to_json_number(line.unit_price),
                    "line_total": to_json_number(line.line_total),
                    "synthesized": line.synthesized,
                }
                for line in self.lines
            ],
        }


@dataclass(frozen=True)
class PurchaseOrderItemView:
    """What the return form shows for an order line: how much is still returnable."""
    id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    returned_quantity: Decimal
    remaining_quantity: Decimal
    total_returned_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": to_json_number(self.quantity),
            "unit_price": to_json_number(self.unit_price),
            "total": to_json_number(self.total),
            "returned_quantity": to_json_number(self.returned_quantity),
            "remaining_quantity": to_json_number(self.remaining_quantity),
            "total_returned_amount": to_json_number(self.total_returned_amount),
        }


# =============================================================================
# BUILDER
# =============================================================================

def resolve_tax_amount(subtotal: Decimal, payload: PurchaseOrderPayload) -> Decimal:
    """
    Tax for the adjusted subtotal.

    - declared rate: subtotal x rate / 100
    - base subtotal and base tax both positive: keep the effective ratio
    - otherwise: the base tax amount as declared
    """
    if payload.tax_rate is not None:
        return round_amount(subtotal * payload.tax_rate / 100)
    if payload.base_subtotal > 0 and payload.base_tax_amount > 0:
        ratio = payload.base_tax_amount / payload.base_subtotal
        return round_amount(subtotal * ratio)
    return round_amount(payload.base_tax_amount)


def _adjust_line(line: PurchaseOrderLine, summary: Optional[PurchaseReturnedItemSummary]) -> AdjustedLine:
    returned_total = summary.total_quantity if summary else ZERO
    # Over-returns are capped so remaining + returned always equals the ordered quantity
    returned_quantity = min(returned_total, line.quantity) if line.quantity > 0 else ZERO
    remaining_quantity = max(ZERO, line.quantity - returned_quantity)
    return AdjustedLine(
        source_item_id=line.id,
        description=line.description,
        original_quantity=line.quantity,
        returned_quantity=returned_quantity,
        remaining_quantity=remaining_quantity,
        returned_amount=summary.total_amount if summary else ZERO,
        unit_price=line.unit_price,
        line_total=round_amount(remaining_quantity * line.unit_price),
        line=line,
    )


def _synthesize_line(summary: PurchaseReturnedItemSummary) -> AdjustedLine:
    if summary.total_quantity > 0:
        unit_price = round_amount(summary.total_amount / summary.total_quantity)
    else:
        unit_price = ZERO
    return AdjustedLine(
        source_item_id=summary.source_item_id,
        description=summary.description or f"Item {summary.source_item_id}",
        original_quantity=summary.total_quantity,
        returned_quantity=summary.total_quantity,
        remaining_quantity=ZERO,
        returned_amount=summary.total_amount,
        unit_price=unit_price,
        line_total=ZERO,
    )


def build_purchase_order_adjustment(
    payload: PurchaseOrderPayload,
    summaries: Iterable[PurchaseReturnedItemSummary],
    paid_amount: Decimal = ZERO,
) -> Optional[PurchaseOrderAdjustment]:
    """
    Rebuild an order's lines and financials from its completed-return summaries.

    Args:
        payload: Canonical order payload (see purchase_payloads.load_purchase_order_payload)
        summaries: Returned-item summaries built from COMPLETED returns only
        paid_amount: Amount already paid on the order (read, never changed)

    Returns:
        PurchaseOrderAdjustment, or None when the order has no lines and
        there are no returns: nothing to adjust, the caller must not write.
    """
    summaries = list(summaries)
    if not payload.lines and not summaries:
        return None

    by_source = summaries_by_source(summaries)
    known_ids = set()
    lines: list[AdjustedLine] = []
    subtotal = ZERO

    for line in payload.lines:
        known_ids.add(line.id)
        adjusted = _adjust_line(line, by_source.get(line.id))
        subtotal += adjusted.line_total
        lines.append(adjusted)

    # Order lines removed after the return was filed: fully returned, nothing left to bill
    for summary in summaries:
        if summary.source_item_id in known_ids:
            continue
        lines.append(_synthesize_line(summary))

    subtotal = round_amount(subtotal)
    tax_amount = resolve_tax_amount(subtotal, payload)
    total_amount = round_amount(subtotal + tax_amount)
    remaining_amount = max(ZERO, round_amount(total_amount - paid_amount))
    total_returned_amount = round_amount(sum((s.total_amount for s in summaries), ZERO))

    return PurchaseOrderAdjustment(
        lines=lines,
        summaries=summaries,
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=total_amount,
        remaining_amount=remaining_amount,
        total_returned_amount=total_returned_amount,
        tax_rate=payload.tax_rate,
        base_subtotal=payload.base_subtotal,
        base_tax_amount=payload.base_tax_amount,
    )


def describe_purchase_order_items(
    payload: PurchaseOrderPayload,
    summaries: Iterable[PurchaseReturnedItemSummary],
) -> list[PurchaseOrderItemView]:
    """Per-line returned/remaining quantities for display and for return-form limits."""
    by_source = summaries_by_source(summaries)
    views = []
    for line in payload.lines:
        summary = by_source.get(line.id)
        returned_quantity = summary.total_quantity if summary else ZERO
        views.append(
            PurchaseOrderItemView(
                id=line.id,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total=line.line_total,
                returned_quantity=returned_quantity,
                remaining_quantity=max(ZERO, line.quantity - returned_quantity),
                total_returned_amount=summary.total_amount if summary else ZERO,
            )
        )
    return views


def available_quantities(views: Iterable[PurchaseOrderItemView]) -> dict[str, Decimal]:
    return {view.id: view.remaining_quantity for view in views}
