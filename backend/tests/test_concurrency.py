"""
Tests for store helpers: retry on stale versions and error translation.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from purchase_returns.services import supplier_service
from purchase_returns.services.concurrency import StoreError, run_with_retry, store_operation
from purchase_returns.services.supplier_service import SupplierNotFoundError


class TestRunWithRetry:
    def test_retries_stale_version_then_succeeds(self, db_session):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("row was updated by another session")
            return "written"

        assert run_with_retry(flaky, attempts=3, backoff_base=0) == "written"
        assert len(calls) == 2

    def test_gives_up_after_last_attempt(self, db_session):
        def locked():
            raise OperationalError("UPDATE suppliers", {}, Exception("database is locked"))

        with pytest.raises(OperationalError):
            run_with_retry(locked, attempts=2, backoff_base=0)

    def test_other_errors_are_not_retried(self, db_session):
        calls = []

        def broken():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(broken, attempts=3, backoff_base=0)
        assert len(calls) == 1


class TestStoreOperation:
    def test_sqlalchemy_errors_become_store_errors(self, db_session):
        @store_operation
        def write():
            raise IntegrityError("INSERT INTO suppliers", {}, Exception("NOT NULL constraint failed"))

        with pytest.raises(StoreError, match="write failed") as excinfo:
            write()
        assert isinstance(excinfo.value.__cause__, IntegrityError)

    def test_service_errors_pass_through(self, db_session):
        with pytest.raises(SupplierNotFoundError):
            supplier_service.adjust_supplier_balance(4040, Decimal("5"))


class TestSupplierBalance:
    def test_deltas_are_rounded_and_zero_is_a_no_op(self, db_session, supplier):
        assert supplier_service.adjust_supplier_balance(supplier.id, Decimal("10.005")) == Decimal("10.01")
        assert supplier_service.adjust_supplier_balance(supplier.id, Decimal("-2.5")) == Decimal("7.51")
        assert supplier_service.adjust_supplier_balance(supplier.id, 0) is None
        assert supplier.balance == Decimal("7.51")
        assert supplier.version_id == 3
