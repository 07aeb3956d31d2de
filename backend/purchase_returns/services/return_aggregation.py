# Overview: Groups completed returns by purchase-order line; pure functions, no database work.

"""
Returned-Item Aggregator

Builds one summary per purchase-order line (source item id) from the
returns filed against an order. Callers pass completed returns only;
pending, approved and rejected returns never reduce order quantities.

Rounding is applied at every accumulation step (3 dp for quantities,
2 dp for amounts) so re-running on the same set of returns, in any order,
gives the same totals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from ..money import ZERO, round_amount, round_quantity, to_json_number
from ..time_utils import epoch_millis, to_utc_z
from .return_payloads import ReturnRecord


@dataclass(frozen=True)
class PurchaseReturnHistoryEntry:
    return_id: int
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    created_at: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "returnId": self.return_id,
            "quantity": to_json_number(self.quantity),
            "unitPrice": to_json_number(self.unit_price),
            "total": to_json_number(self.total),
            "createdAt": to_utc_z(self.created_at),
        }


@dataclass
class PurchaseReturnedItemSummary:
    source_item_id: str
    description: str
    total_quantity: Decimal = ZERO
    total_amount: Decimal = ZERO
    history: list[PurchaseReturnHistoryEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sourceItemId": self.source_item_id,
            "description": self.description,
            "totalQuantity": to_json_number(self.total_quantity),
            "totalAmount": to_json_number(self.total_amount),
            "history": [entry.to_dict() for entry in self.history],
        }


def completed_only(records: Iterable[ReturnRecord]) -> list[ReturnRecord]:
    return [record for record in records if record.is_completed]


def _record_sort_key(record: ReturnRecord):
    # Oldest first; missing created_at counts as the epoch
    return (epoch_millis(record.created_at), record.id or 0)


def _history_sort_key(entry: PurchaseReturnHistoryEntry):
    # Newest first; ties broken by return id so the order is stable across inputs
    return (-epoch_millis(entry.created_at), -entry.return_id)


def build_returned_item_summaries(records: Iterable[ReturnRecord]) -> list[PurchaseReturnedItemSummary]:
    """
    Sum returned quantity and amount per source item id.

    Items without a source item id (manual lines) are skipped entirely.
    Records are walked oldest first whatever order they arrive in, so
    summaries come out in order of their oldest contribution and take the
    description of that contribution. Each history is newest first, with
    missing created_at treated as the epoch.
    """
    aggregate: dict[str, PurchaseReturnedItemSummary] = {}

    for record in sorted(records, key=_record_sort_key):
        for item in record.items:
            source_id = item.source_item_id
            if not source_id:
                continue

            summary = aggregate.get(source_id)
            if summary is None:
                summary = PurchaseReturnedItemSummary(
                    source_item_id=source_id,
                    description=item.description,
                )
                aggregate[source_id] = summary

            summary.total_quantity = round_quantity(summary.total_quantity + item.quantity)
            summary.total_amount = round_amount(summary.total_amount + item.total)
            summary.history.append(
                PurchaseReturnHistoryEntry(
                    return_id=record.id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total=item.total,
                    created_at=record.created_at,
                )
            )

    for summary in aggregate.values():
        summary.history.sort(key=_history_sort_key)

    return list(aggregate.values())


def summaries_by_source(summaries: Iterable[PurchaseReturnedItemSummary]) -> dict[str, PurchaseReturnedItemSummary]:
    return {summary.source_item_id: summary for summary in summaries}
