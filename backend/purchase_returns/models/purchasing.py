from __future__ import annotations

from ..extensions import db
from ..money import to_json_number
from ..time_utils import to_utc_z


class Supplier(db.Model):
    """
    Supplier master data.

    `balance` is the running amount owed to / credited by the supplier.
    Completed and pending purchase returns both move it: a return adds its
    total, editing or deleting the return reverses that delta.
    """
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(128), nullable=True)
    balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r} balance={self.balance}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "city": self.city,
            "balance": to_json_number(self.balance),
            "version_id": self.version_id,
        }


class Expense(db.Model):
    """Expense entry that an expense return can point at."""
    __tablename__ = "expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    description = db.Column(db.Text, nullable=True)
    receipt_number = db.Column(db.String(64), nullable=True)
    expense_date = db.Column(db.DateTime(timezone=True), nullable=True)

    base_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "receipt_number": self.receipt_number,
            "expense_date": to_utc_z(self.expense_date),
            "base_amount": to_json_number(self.base_amount),
            "tax_amount": to_json_number(self.tax_amount),
            "total_amount": to_json_number(self.total_amount),
            "paid_amount": to_json_number(self.paid_amount),
        }


class PurchaseOrder(db.Model):
    """
    Purchase order with an embedded JSON item payload.

    items_payload is the order as the purchasing screens wrote it: an object
    with `items` plus financial keys (subtotal, tax_amount, ...), or a bare
    list of items on very old rows. Key names vary across rows; only
    services.purchase_payloads reads or writes it.

    INVARIANTS (kept by reconciliation, not by the database):
    - total_amount = subtotal + tax_amount
    - remaining_amount = max(0, total_amount - paid_amount)
    - paid_amount is never touched by return reconciliation
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_purchase_orders_supplier", "supplier_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)

    purchase_number = db.Column(db.String(64), nullable=True)
    reference_number = db.Column(db.String(64), nullable=True)
    purchase_date = db.Column(db.DateTime(timezone=True), nullable=True)

    items_payload = db.Column(db.JSON, nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    remaining_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PurchaseOrder id={self.id} supplier_id={self.supplier_id} total={self.total_amount}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "purchase_number": self.purchase_number,
            "reference_number": self.reference_number,
            "purchase_date": to_utc_z(self.purchase_date),
            "items_payload": self.items_payload,
            "subtotal": to_json_number(self.subtotal),
            "tax_amount": to_json_number(self.tax_amount),
            "total_amount": to_json_number(self.total_amount),
            "paid_amount": to_json_number(self.paid_amount),
            "remaining_amount": to_json_number(self.remaining_amount),
            "version_id": self.version_id,
        }
