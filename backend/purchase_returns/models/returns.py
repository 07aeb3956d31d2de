from __future__ import annotations

from ..extensions import db
from ..money import to_json_number
from ..time_utils import to_utc_z


class ReturnDocument(db.Model):
    """
    Purchase or expense return request.

    LIFECYCLE:
    1. PENDING: Return filed
    2. APPROVED: Accepted, waiting to be processed
    3. COMPLETED: Processed; only now do its lines reduce purchase-order quantities
    4. REJECTED: Declined

    LINKAGE:
    - PURCHASE returns point at a purchase order (and its supplier), or carry a
      manual reference + manual supplier in items_payload.metadata when the
      purchase only exists on paper.
    - EXPENSE returns point at an expense, or carry a manual reference.

    items_payload holds {"items": [...], "notes": ..., "metadata": {...}}.
    Rows written by older clients may hold a bare list or legacy key names;
    services.return_payloads normalizes them.
    """
    __tablename__ = "returns_management"
    __table_args__ = (
        db.Index("ix_returns_purchase_status", "purchase_order_id", "status"),
        db.Index("ix_returns_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    return_type = db.Column(db.String(32), nullable=False, default="PURCHASE")  # PURCHASE, EXPENSE
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, APPROVED, REJECTED, COMPLETED
    reason = db.Column(db.Text, nullable=True)

    items_payload = db.Column(db.JSON, nullable=True)

    # refund_amount is the pre-tax base; total_amount includes tax
    refund_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    remaining_amount = db.Column(db.Numeric(12, 2), nullable=True)
    affects_inventory = db.Column(db.Boolean, nullable=False, default=False)

    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    updated_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("returns", lazy=True))
    expense = db.relationship("Expense", backref=db.backref("returns", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("returns", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ReturnDocument id={self.id} type={self.return_type} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_type": self.return_type,
            "status": self.status,
            "reason": self.reason,
            "items_payload": self.items_payload,
            "refund_amount": to_json_number(self.refund_amount),
            "total_amount": to_json_number(self.total_amount),
            "remaining_amount": to_json_number(self.remaining_amount),
            "affects_inventory": self.affects_inventory,
            "purchase_order_id": self.purchase_order_id,
            "expense_id": self.expense_id,
            "supplier_id": self.supplier_id,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
