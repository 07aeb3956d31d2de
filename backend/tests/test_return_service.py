"""
Tests for return mutations and their effect on suppliers and purchase orders.

Default purchase order (see conftest): line-1 Cement 10 x 5.00,
line-2 Sand 4 x 12.50, tax 15.00, paid 40.00
-> subtotal 100, total 115, remaining 75.
"""

import copy
from decimal import Decimal

import pytest

from purchase_returns.context import FeatureFlags
from purchase_returns.models import ReturnDocument
from purchase_returns.services import purchase_order_service, return_service
from purchase_returns.services.concurrency import StoreError
from purchase_returns.services.return_service import (
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_PENDING,
    RETURN_STATUS_REJECTED,
    ReturnDraft,
    ReturnNotFoundError,
)
from purchase_returns.services.saga import CompensationFailure
from purchase_returns.validation import ValidationError


def _financials(order):
    return (order.subtotal, order.tax_amount, order.total_amount, order.remaining_amount)


def _line(order, line_id):
    return next(item for item in order.items_payload["items"] if item["id"] == line_id)


class TestCreateReturn:
    def test_new_return_is_pending_and_moves_supplier_balance(
        self, db_session, purchase_order, supplier, file_return, return_body
    ):
        record = file_return(return_body(purchase_order, quantity=2, tax_amount=1.5))

        assert record.status == RETURN_STATUS_PENDING
        assert record.base_amount == Decimal("10.00")
        assert record.tax_amount == Decimal("1.50")
        assert record.total_amount == Decimal("11.50")
        assert record.purchase_number == f"PUR-{purchase_order.id:06d}"
        assert record.supplier_name == "Delta Building Supplies"
        assert supplier.balance == Decimal("11.50")

        doc = db_session.get(ReturnDocument, record.id)
        assert doc.created_by_user_id == 7
        assert doc.affects_inventory is True

    def test_pending_return_does_not_reduce_order(self, db_session, purchase_order, file_return, return_body):
        file_return(return_body(purchase_order, quantity=5))

        assert _financials(purchase_order) == (Decimal("100"), Decimal("15"), Decimal("115"), Decimal("75"))
        assert _line(purchase_order, "line-1")["remainingQuantity"] == 10

    def test_approved_return_does_not_reduce_order(self, db_session, purchase_order, file_return, return_body):
        file_return(return_body(purchase_order, quantity=5), status=RETURN_STATUS_APPROVED)

        views = purchase_order_service.describe_purchase_order(purchase_order.id)
        assert views[0].remaining_quantity == 10

    def test_completed_return_reduces_order(self, db_session, purchase_order, supplier, file_return, return_body):
        record = file_return(return_body(purchase_order, quantity=2), status=RETURN_STATUS_COMPLETED)

        assert record.status == RETURN_STATUS_COMPLETED
        # 8 x 5 + 4 x 12.50 = 90; tax keeps the 15% ratio
        assert _financials(purchase_order) == (
            Decimal("90.00"),
            Decimal("13.50"),
            Decimal("103.50"),
            Decimal("63.50"),
        )
        line = _line(purchase_order, "line-1")
        assert line["quantity"] == 10
        assert line["remainingQuantity"] == 8
        assert line["returnedQuantity"] == 2
        assert purchase_order.paid_amount == Decimal("40")
        # Status changes never touch the supplier balance
        assert supplier.balance == Decimal("10.00")

    def test_manual_purchase_return(self, db_session, supplier, file_return):
        record = file_return({
            "type": "purchase",
            "is_manual": True,
            "manual_reference": "INV-1001",
            "manual_date": "2026-03-01",
            "manual_supplier_id": supplier.id,
            "reason": "Wrong item",
            "amount": 50,
            "tax_amount": 7.5,
            "items": [{"sourceItemId": "line-1", "description": "Paper only", "quantity": 1, "unitPrice": 0}],
        })

        assert record.is_manual
        assert record.manual_reference == "INV-1001"
        assert record.manual_supplier_id == supplier.id
        assert record.purchase_order_id is None
        assert record.total_amount == Decimal("57.50")
        assert record.items[0].source_item_id is None
        assert supplier.balance == Decimal("57.50")

    def test_expense_return_leaves_suppliers_alone(self, db_session, supplier, expense, file_return):
        record = file_return({
            "type": "expense",
            "expense_id": expense.id,
            "reason": "Broken on delivery",
            "amount": 100,
            "tax_amount": 15,
        })

        assert record.type == "EXPENSE"
        assert record.total_amount == Decimal("115.00")
        assert record.expense_number == "rc-881"
        assert record.supplier_id is None
        assert supplier.balance == Decimal("0")

    def test_sync_switched_off(self, db_session, purchase_order, supplier, file_return, return_body):
        flags = FeatureFlags(supplier_balance_sync=False, purchase_order_sync=False)

        file_return(return_body(purchase_order, quantity=2), status=RETURN_STATUS_COMPLETED, flags=flags)

        assert supplier.balance == Decimal("0")
        assert purchase_order.subtotal == Decimal("100")
        assert "returned_items" not in purchase_order.items_payload

        # A later resync catches up
        purchase_order_service.sync_purchase_order_returns(purchase_order.id)
        assert purchase_order.subtotal == Decimal("90.00")


class TestValidation:
    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"reason": "  "}, "reason"),
            ({"purchase_order_id": None}, "purchase order"),
            ({"purchase_order_id": 9999}, "not found"),
            ({"type": "refund"}, "Unknown return type"),
            ({"type": None}, "Return type is required"),
            ({"tax_amount": -1}, "must be >= 0"),
            ({"manual_date": "next tuesday"}, "manual_date"),
            ({"is_manual": "false"}, "is_manual must be true or false"),
        ],
    )
    def test_invalid_drafts_write_nothing(
        self, db_session, purchase_order, supplier, file_return, return_body, overrides, message
    ):
        with pytest.raises(ValidationError, match=message):
            file_return(return_body(purchase_order, **overrides))

        assert db_session.query(ReturnDocument).count() == 0
        assert supplier.balance == Decimal("0")

    def test_total_must_be_positive(self, db_session, purchase_order, file_return, return_body):
        with pytest.raises(ValidationError, match="greater than zero"):
            file_return(return_body(purchase_order, quantity=0))

    def test_negative_quantity_rejected(self, db_session, purchase_order, file_return, return_body):
        with pytest.raises(ValidationError, match="quantity must be >= 0"):
            file_return(return_body(purchase_order, quantity=-2))

    def test_manual_purchase_needs_reference_and_supplier(self, db_session, supplier, file_return):
        body = {"type": "purchase", "is_manual": True, "reason": "Wrong item", "amount": 10}
        with pytest.raises(ValidationError, match="invoice number"):
            file_return(body)
        with pytest.raises(ValidationError, match="supplier"):
            file_return(dict(body, manual_reference="INV-1"))
        with pytest.raises(ValidationError, match="not found"):
            file_return(dict(body, manual_reference="INV-1", manual_supplier_id=4242))

    def test_expense_return_needs_expense_or_reference(self, db_session, file_return):
        body = {"type": "expense", "reason": "Overcharged", "amount": 10}
        with pytest.raises(ValidationError, match="select an expense"):
            file_return(body)
        with pytest.raises(ValidationError, match="expense reference"):
            file_return(dict(body, is_manual=True))

        record = file_return(dict(body, is_manual=True, manual_reference="EXP-REF-9"))
        assert record.expense_number == "EXP-REF-9"

    def test_unknown_order_line_rejected(self, db_session, purchase_order, file_return, return_body):
        with pytest.raises(ValidationError, match="not on purchase order"):
            file_return(return_body(purchase_order, source_item_id="line-99"))

    def test_cannot_return_more_than_remains(self, db_session, purchase_order, file_return, return_body):
        file_return(return_body(purchase_order, quantity=8), status=RETURN_STATUS_COMPLETED)

        with pytest.raises(ValidationError, match="line-1"):
            file_return(return_body(purchase_order, quantity=3))

        record = file_return(return_body(purchase_order, quantity=2))
        assert record.items[0].quantity == Decimal("2")

    def test_lines_split_across_items_are_summed(self, db_session, purchase_order, file_return, return_body):
        body = return_body(purchase_order, quantity=6)
        body["items"].append({"sourceItemId": "line-1", "description": "More", "quantity": 5, "unitPrice": 5})

        with pytest.raises(ValidationError, match="line-1"):
            file_return(body)


class TestStatusTransitions:
    def test_full_lifecycle(self, db_session, purchase_order, file_return, return_body, clerk, flags):
        record = file_return(return_body(purchase_order))

        record = return_service.change_return_status(record.id, "approved", session=clerk, flags=flags)
        assert record.status == RETURN_STATUS_APPROVED
        record = return_service.change_return_status(record.id, "complete", session=clerk, flags=flags)
        assert record.status == RETURN_STATUS_COMPLETED

        doc = db_session.get(ReturnDocument, record.id)
        assert doc.status == RETURN_STATUS_COMPLETED
        assert doc.updated_by_user_id == 7

    @pytest.mark.parametrize(
        "start, target",
        [
            (RETURN_STATUS_PENDING, RETURN_STATUS_COMPLETED),
            (RETURN_STATUS_PENDING, RETURN_STATUS_PENDING),
            (RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED),
            (RETURN_STATUS_REJECTED, RETURN_STATUS_APPROVED),
            (RETURN_STATUS_COMPLETED, RETURN_STATUS_PENDING),
            (RETURN_STATUS_PENDING, "archived"),
        ],
    )
    def test_illegal_transitions(self, db_session, purchase_order, file_return, return_body, clerk, flags, start, target):
        record = file_return(return_body(purchase_order), status=start)

        with pytest.raises(ValidationError):
            return_service.change_return_status(record.id, target, session=clerk, flags=flags)

        assert return_service.get_return(record.id).status == start

    def test_unknown_return(self, db_session, clerk, flags):
        with pytest.raises(ReturnNotFoundError):
            return_service.change_return_status(404, "approved", session=clerk, flags=flags)

    def test_legacy_complete_spelling_counts_as_completed(self, db_session, purchase_order, file_return, return_body):
        record = file_return(return_body(purchase_order, quantity=2))
        doc = db_session.get(ReturnDocument, record.id)
        doc.status = "complete"
        db_session.commit()

        purchase_order_service.sync_purchase_order_returns(purchase_order.id)

        assert purchase_order.subtotal == Decimal("90.00")


class TestEditReturn:
    def test_edit_replaces_supplier_delta_and_resyncs(
        self, db_session, purchase_order, supplier, file_return, return_body, clerk, flags
    ):
        record = file_return(return_body(purchase_order, quantity=2), status=RETURN_STATUS_COMPLETED)

        draft = ReturnDraft.from_dict(return_body(purchase_order, quantity=4), return_id=record.id)
        edited = return_service.submit_return(draft, session=clerk, flags=flags)

        assert edited.status == RETURN_STATUS_COMPLETED
        assert edited.total_amount == Decimal("20.00")
        assert supplier.balance == Decimal("20.00")
        assert _financials(purchase_order) == (
            Decimal("80.00"),
            Decimal("12.00"),
            Decimal("92.00"),
            Decimal("52.00"),
        )

    def test_edit_can_use_its_own_returned_quantity(
        self, db_session, purchase_order, file_return, return_body, clerk, flags
    ):
        record = file_return(return_body(purchase_order, quantity=8), status=RETURN_STATUS_COMPLETED)

        draft = ReturnDraft.from_dict(return_body(purchase_order, quantity=10), return_id=record.id)
        return_service.submit_return(draft, session=clerk, flags=flags)

        assert _line(purchase_order, "line-1")["remainingQuantity"] == 0
        assert purchase_order.subtotal == Decimal("50.00")

    def test_moving_return_to_another_order_resyncs_both(
        self, db_session, make_purchase_order, purchase_order, supplier, other_supplier,
        file_return, return_body, clerk, flags
    ):
        order_b = make_purchase_order(
            supplier=other_supplier,
            items=[{"id": "b-1", "description": "Oak boards", "quantity": 5, "unitPrice": 20}],
            tax_amount=0,
            paid_amount=0,
        )
        record = file_return(return_body(purchase_order, quantity=2), status=RETURN_STATUS_COMPLETED)
        assert purchase_order.subtotal == Decimal("90.00")

        body = return_body(order_b, quantity=1, source_item_id="b-1", unit_price=20)
        return_service.submit_return(ReturnDraft.from_dict(body, return_id=record.id), session=clerk, flags=flags)

        assert _financials(purchase_order) == (Decimal("100.00"), Decimal("15.00"), Decimal("115.00"), Decimal("75.00"))
        assert _financials(order_b) == (Decimal("80.00"), Decimal("0.00"), Decimal("80.00"), Decimal("80.00"))
        assert supplier.balance == Decimal("0.00")
        assert other_supplier.balance == Decimal("20.00")

    def test_edit_unknown_return(self, db_session, purchase_order, return_body, clerk, flags):
        draft = ReturnDraft.from_dict(return_body(purchase_order), return_id=999)
        with pytest.raises(ReturnNotFoundError):
            return_service.submit_return(draft, session=clerk, flags=flags)


class TestDeleteReturn:
    def test_delete_completed_return_restores_order_and_supplier(
        self, db_session, purchase_order, supplier, file_return, return_body, clerk, flags
    ):
        record = file_return(return_body(purchase_order, quantity=2), status=RETURN_STATUS_COMPLETED)

        return_service.delete_return(record.id, session=clerk, flags=flags)

        assert db_session.get(ReturnDocument, record.id) is None
        assert supplier.balance == Decimal("0.00")
        assert _financials(purchase_order) == (Decimal("100.00"), Decimal("15.00"), Decimal("115.00"), Decimal("75.00"))
        assert "returned_items" not in purchase_order.items_payload

    def test_delete_return_against_removed_line_keeps_it_off_the_bill(
        self, db_session, purchase_order, file_return, return_body, clerk, flags
    ):
        record = file_return(
            return_body(purchase_order, quantity=4, source_item_id="line-2", unit_price=12.5),
            status=RETURN_STATUS_COMPLETED,
        )
        payload = copy.deepcopy(purchase_order.items_payload)
        payload["items"] = [item for item in payload["items"] if item["id"] != "line-2"]
        purchase_order.items_payload = payload
        db_session.commit()

        purchase_order_service.sync_purchase_order_returns(purchase_order.id)
        returned_line = _line(purchase_order, "line-2")
        assert returned_line["returnOnly"] is True
        assert returned_line["quantity"] == 0
        assert returned_line["returnedQuantity"] == 4
        assert _financials(purchase_order) == (Decimal("50.00"), Decimal("7.50"), Decimal("57.50"), Decimal("17.50"))

        return_service.delete_return(record.id, session=clerk, flags=flags)
        purchase_order_service.sync_purchase_order_returns(purchase_order.id)

        assert [item["id"] for item in purchase_order.items_payload["items"]] == ["line-1"]
        assert _financials(purchase_order) == (Decimal("50.00"), Decimal("7.50"), Decimal("57.50"), Decimal("17.50"))

    def test_delete_unknown_return(self, db_session, clerk, flags):
        with pytest.raises(ReturnNotFoundError):
            return_service.delete_return(12345, session=clerk, flags=flags)


class TestRollback:
    def test_failed_order_write_on_create_removes_return(
        self, db_session, purchase_order, supplier, file_return, return_body, monkeypatch
    ):
        def failing_sync(purchase_order_id):
            raise StoreError("purchase order write failed")

        monkeypatch.setattr(purchase_order_service, "sync_purchase_order_returns", failing_sync)

        with pytest.raises(StoreError, match="purchase order write failed"):
            file_return(return_body(purchase_order, quantity=2))

        assert db_session.query(ReturnDocument).count() == 0
        assert supplier.balance == Decimal("0.00")
        assert purchase_order.subtotal == Decimal("100")

    def test_failed_order_write_restores_snapshot_and_return(
        self, db_session, make_purchase_order, purchase_order, supplier, other_supplier,
        file_return, return_body, clerk, flags, monkeypatch
    ):
        order_b = make_purchase_order(
            supplier=other_supplier,
            items=[{"id": "b-1", "quantity": 5, "unitPrice": 20}],
            tax_amount=0,
            paid_amount=0,
        )
        record = file_return(return_body(purchase_order, quantity=2), status=RETURN_STATUS_COMPLETED)
        before = _financials(purchase_order)
        payload_before = purchase_order.items_payload

        real_sync = purchase_order_service.sync_purchase_order_returns

        def flaky_sync(purchase_order_id):
            if purchase_order_id == order_b.id:
                raise StoreError("purchase order write failed")
            return real_sync(purchase_order_id)

        monkeypatch.setattr(purchase_order_service, "sync_purchase_order_returns", flaky_sync)

        body = return_body(order_b, quantity=1, source_item_id="b-1", unit_price=20)
        with pytest.raises(StoreError):
            return_service.submit_return(ReturnDraft.from_dict(body, return_id=record.id), session=clerk, flags=flags)

        # Order A had already been re-synced without the return; its snapshot is back
        assert _financials(purchase_order) == before
        assert purchase_order.items_payload == payload_before
        restored = return_service.get_return(record.id)
        assert restored.purchase_order_id == purchase_order.id
        assert restored.total_amount == Decimal("10.00")
        assert supplier.balance == Decimal("10.00")
        assert other_supplier.balance == Decimal("0.00")
        assert order_b.subtotal == Decimal("100")

    def test_failed_delete_restores_return_with_same_id(
        self, db_session, purchase_order, supplier, file_return, return_body, clerk, flags, monkeypatch
    ):
        record = file_return(return_body(purchase_order, quantity=2), status=RETURN_STATUS_COMPLETED)

        def failing_sync(purchase_order_id):
            raise StoreError("purchase order write failed")

        monkeypatch.setattr(purchase_order_service, "sync_purchase_order_returns", failing_sync)

        with pytest.raises(StoreError):
            return_service.delete_return(record.id, session=clerk, flags=flags)

        restored = return_service.get_return(record.id)
        assert restored.status == RETURN_STATUS_COMPLETED
        assert restored.items[0].source_item_id == "line-1"
        assert supplier.balance == Decimal("10.00")

    def test_failed_compensation_is_reported(
        self, db_session, purchase_order, supplier, file_return, return_body, monkeypatch
    ):
        def failing_sync(purchase_order_id):
            raise StoreError("purchase order write failed")

        def failing_delete(return_id):
            raise StoreError("delete rejected")

        monkeypatch.setattr(purchase_order_service, "sync_purchase_order_returns", failing_sync)
        monkeypatch.setattr(return_service, "_delete_return_document", failing_delete)

        with pytest.raises(CompensationFailure) as excinfo:
            file_return(return_body(purchase_order, quantity=2))

        assert [name for name, _ in excinfo.value.failures] == ["persist return"]
        # The supplier step was still undone; the orphaned return is left for follow-up
        assert supplier.balance == Decimal("0.00")
        assert db_session.query(ReturnDocument).count() == 1


class TestQueries:
    def test_list_filters_and_search(
        self, db_session, purchase_order, expense, file_return, return_body
    ):
        completed = file_return(return_body(purchase_order, quantity=1), status=RETURN_STATUS_COMPLETED)
        rejected = file_return(return_body(purchase_order, quantity=1, reason="Late delivery"), status=RETURN_STATUS_REJECTED)
        expense_return = file_return({"type": "expense", "expense_id": expense.id, "reason": "Overcharged", "amount": 20})

        assert [r.id for r in return_service.list_returns()] == [expense_return.id, rejected.id, completed.id]
        assert [r.id for r in return_service.list_returns(return_type="expense")] == [expense_return.id]
        assert [r.id for r in return_service.list_returns(status="completed")] == [completed.id]
        assert len(return_service.list_returns(status="all", return_type="all")) == 3
        assert [r.id for r in return_service.list_returns(search="late")] == [rejected.id]
        assert [r.id for r in return_service.list_returns(search="RC-881")] == [expense_return.id]

        with pytest.raises(ValidationError):
            return_service.list_returns(status="archived")

    def test_statistics(self, db_session, purchase_order, file_return, return_body):
        file_return(return_body(purchase_order, quantity=1))
        file_return(return_body(purchase_order, quantity=1), status=RETURN_STATUS_APPROVED)
        file_return(return_body(purchase_order, quantity=2), status=RETURN_STATUS_COMPLETED)
        file_return(return_body(purchase_order, quantity=1), status=RETURN_STATUS_REJECTED)

        stats = return_service.get_return_statistics()

        assert stats == {
            "total_returns": 4,
            "pending_returns": 1,
            "approved_returns": 2,
            "total_return_amount": Decimal("25.00"),
        }

    def test_resync_all(self, db_session, make_purchase_order, purchase_order, file_return, return_body):
        empty = make_purchase_order(items=[], tax_amount=0, paid_amount=0)
        file_return(return_body(purchase_order, quantity=2), status=RETURN_STATUS_COMPLETED)

        results = purchase_order_service.sync_all_purchase_orders()

        assert results[empty.id] is None
        assert results[purchase_order.id].subtotal == Decimal("90.00")
