# backend/purchase_returns/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Local SQLite by default; production points DATABASE_URL at the hosted Postgres
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///purchase_returns.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Side effects of a return mutation (see context.FeatureFlags)
    RETURNS_SUPPLIER_BALANCE_SYNC = _env_flag("RETURNS_SUPPLIER_BALANCE_SYNC", True)
    RETURNS_PURCHASE_ORDER_SYNC = _env_flag("RETURNS_PURCHASE_ORDER_SYNC", True)

    # Attempts for store writes that hit a lock or a stale version
    RETURNS_STORE_RETRY_ATTEMPTS = int(os.environ.get("RETURNS_STORE_RETRY_ATTEMPTS", "3"))
