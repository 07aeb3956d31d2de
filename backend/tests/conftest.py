"""
Pytest fixtures for purchase returns backend tests.

Provides test database setup, supplier/purchase-order factories, a helper
that files a return and walks it to a status, and the test client.
"""

from decimal import Decimal

import pytest
from purchase_returns import create_app
from purchase_returns.context import FeatureFlags, Session
from purchase_returns.extensions import db
from purchase_returns.models import Expense
from purchase_returns.services import purchase_order_service, return_service, supplier_service
from purchase_returns.services.return_service import ReturnDraft


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETURNS_STORE_RETRY_ATTEMPTS': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def clerk():
    """Acting user for mutations."""
    return Session(user_id=7)


@pytest.fixture(scope='function')
def flags():
    """All side effects on."""
    return FeatureFlags()


@pytest.fixture(scope='function')
def supplier(db_session):
    """Supplier with a zero balance."""
    return supplier_service.create_supplier(name="Delta Building Supplies", city="Lyon")


@pytest.fixture(scope='function')
def other_supplier(db_session):
    return supplier_service.create_supplier(name="Northwind Timber", city="Nantes")


@pytest.fixture(scope='function')
def expense(db_session):
    """Expense an expense return can point at."""
    entry = Expense(
        description="Office chairs",
        receipt_number="rc-881",
        base_amount=Decimal("200.00"),
        tax_amount=Decimal("30.00"),
        total_amount=Decimal("230.00"),
    )
    db_session.add(entry)
    db_session.commit()
    return entry


@pytest.fixture(scope='function')
def make_purchase_order(db_session):
    """
    Factory for purchase orders.

    Default order: line-1 Cement 10 x 5.00, line-2 Sand 4 x 12.50,
    tax 15.00, paid 40.00 -> subtotal 100, total 115, remaining 75.
    """
    def _make(supplier=None, items=None, tax_amount=Decimal("15"), tax_rate=None, paid_amount=Decimal("40"), **kwargs):
        if items is None:
            items = [
                {"id": "line-1", "description": "Cement", "quantity": 10, "unitPrice": 5},
                {"id": "line-2", "description": "Sand", "quantity": 4, "unitPrice": 12.5},
            ]
        return purchase_order_service.create_purchase_order(
            supplier_id=supplier.id if supplier is not None else None,
            items=items,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            paid_amount=paid_amount,
            **kwargs,
        )
    return _make


@pytest.fixture(scope='function')
def purchase_order(make_purchase_order, supplier):
    return make_purchase_order(supplier=supplier)


@pytest.fixture(scope='function')
def file_return(db_session, clerk, flags):
    """
    Factory that submits a return and moves it to `status`.

    Walks the allowed lifecycle (PENDING -> APPROVED -> COMPLETED, or
    PENDING -> REJECTED) so the same paths the API uses are exercised.
    """
    def _file(body, status="PENDING", flags=flags):
        record = return_service.submit_return(ReturnDraft.from_dict(body), session=clerk, flags=flags)
        if status in ("APPROVED", "COMPLETED"):
            record = return_service.change_return_status(record.id, "APPROVED", session=clerk, flags=flags)
        if status == "COMPLETED":
            record = return_service.change_return_status(record.id, "COMPLETED", session=clerk, flags=flags)
        if status == "REJECTED":
            record = return_service.change_return_status(record.id, "REJECTED", session=clerk, flags=flags)
        return record
    return _file


def purchase_return_body(purchase_order, quantity=2, source_item_id="line-1", unit_price=5, tax_amount=0, **overrides):
    """Request body for a purchase return against one order line."""
    body = {
        "type": "purchase",
        "purchase_order_id": purchase_order.id,
        "reason": "Damaged on arrival",
        "items": [
            {
                "sourceItemId": source_item_id,
                "description": "Returned goods",
                "quantity": quantity,
                "unitPrice": unit_price,
            }
        ],
        "tax_amount": tax_amount,
    }
    body.update(overrides)
    return body


@pytest.fixture(scope='function')
def return_body():
    return purchase_return_body
