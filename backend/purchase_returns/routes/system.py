# backend/purchase_returns/routes/system.py
"""
System health endpoint.

Reports store connectivity and the return side-effect switches the
running instance was configured with.
"""

import time
from flask import Blueprint, current_app
from ..context import FeatureFlags
from ..extensions import db
from ..models import PurchaseOrder, ReturnDocument, Supplier
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        return_count = db.session.query(ReturnDocument).count()
        purchase_order_count = db.session.query(PurchaseOrder).count()
        supplier_count = db.session.query(Supplier).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "returns": return_count,
                "purchase_orders": purchase_order_count,
                "suppliers": supplier_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Store reachable
    - 503: Store unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    flags = FeatureFlags.from_config(current_app.config)

    if database_health["status"] == "healthy":
        overall_status = "healthy"
        http_status = 200
    else:
        overall_status = "unhealthy"
        http_status = 503

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
        },
        "features": {
            "supplier_balance_sync": flags.supplier_balance_sync,
            "purchase_order_sync": flags.purchase_order_sync,
        },
    }

    return response, http_status
