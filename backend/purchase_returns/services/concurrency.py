# Overview: Store access helpers; retry on lock/version conflicts and translation of driver errors.

from __future__ import annotations

import time
from functools import wraps

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class StoreError(Exception):
    """The persistent store rejected a read or write."""


def default_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("RETURNS_STORE_RETRY_ATTEMPTS", 3))
    return 3


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts: another session wrote the row since we
    read it). `func` must re-read what it writes, so a retry recomputes from
    the current state of the store.
    """
    if attempts is None:
        attempts = default_attempts()
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def store_operation(func):
    """
    Roll back and raise StoreError on any SQLAlchemy failure.

    Wraps every function that writes through the session so callers only
    ever see StoreError (or the service's own exceptions).
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"{func.__name__} failed: {exc}") from exc
    return wrapper
