# Overview: Flask API routes for purchase and expense returns; parses input and returns JSON responses.

# backend/purchase_returns/routes/returns.py
"""
Return Processing API Routes

WHY: Let the returns screen file, edit, approve and delete returns through
REST while the service keeps supplier balances and purchase orders in line.

DESIGN:
- Create/edit returns against a purchase order, an expense, or a manual reference
- Approval workflow: PENDING -> APPROVED | REJECTED, APPROVED -> COMPLETED
- Completing, editing or deleting a purchase return re-syncs its purchase order
- Every mutation is attributed to the X-User-Id caller

ERRORS:
- 400 ValidationError (nothing was written)
- 404 unknown return
- 503 store failure, rolled back
- 500 store failure that could not be fully rolled back
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import with_session
from ..money import to_json_number
from ..services import return_service
from ..services.concurrency import StoreError
from ..services.return_service import ReturnDraft, ReturnNotFoundError
from ..services.saga import CompensationFailure
from ..validation import ValidationError


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# QUERIES
# =============================================================================

@returns_bp.get("/")
def list_returns_route():
    """
    List returns, newest first.

    Query parameters:
    - search: substring of return id, purchase/expense number, reference, supplier, reason
    - type: purchase | expense | all
    - status: pending | approved | rejected | completed | all

    Returns:
        200: {"returns": [...]}
        400: Unknown type or status
    """
    try:
        records = return_service.list_returns(
            search=request.args.get("search"),
            return_type=request.args.get("type"),
            status=request.args.get("status"),
        )
        return jsonify({"returns": [record.to_dict() for record in records]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StoreError:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Store unavailable"}), 503
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/stats")
def return_stats_route():
    """Counts for the returns dashboard (approved includes completed)."""
    try:
        stats = return_service.get_return_statistics()
        stats["total_return_amount"] = to_json_number(stats["total_return_amount"])
        return jsonify({"stats": stats}), 200

    except StoreError:
        current_app.logger.exception("Failed to compute return statistics")
        return jsonify({"error": "Store unavailable"}), 503
    except Exception:
        current_app.logger.exception("Failed to compute return statistics")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        record = return_service.get_return(return_id)
        return jsonify({"return": record.to_dict()}), 200

    except ReturnNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MUTATIONS
# =============================================================================

def _mutation_error(e: Exception, action: str):
    """Map a failed mutation to a JSON error response."""
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, ReturnNotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, CompensationFailure):
        current_app.logger.error("Failed to %s and rollback was incomplete: %s", action, e)
        return jsonify({
            "error": f"Failed to {action}; some changes could not be rolled back",
            "uncompensated_steps": [name for name, _ in e.failures],
        }), 500
    if isinstance(e, StoreError):
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"error": f"Failed to {action}; no changes were kept"}), 503
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/")
@with_session
def create_return_route():
    """
    Create a new return (status: PENDING).

    Request body:
    {
        "type": "purchase",
        "purchase_order_id": 12,          (purchase, not manual)
        "expense_id": 4,                  (expense, not manual)
        "is_manual": false,
        "manual_reference": "INV-1001",   (manual only)
        "manual_date": "2026-03-01",      (manual only)
        "manual_supplier_id": 3,          (manual purchase only)
        "reason": "Damaged on arrival",
        "notes": "...",
        "items": [{"sourceItemId": "line-1", "description": "Cement", "quantity": 2, "unitPrice": 10}],
        "amount": 0,                      (used when there are no priced items)
        "tax_amount": 3
    }

    Returns:
        201: Return created
        400: Invalid input
    """
    try:
        draft = ReturnDraft.from_dict(request.get_json(silent=True))
        record = return_service.submit_return(draft, session=g.session, flags=g.flags)
        return jsonify({"return": record.to_dict()}), 201

    except Exception as e:
        return _mutation_error(e, "create return")


@returns_bp.put("/<int:return_id>")
@with_session
def update_return_route(return_id: int):
    """
    Edit a return. Same body as create; the stored status is kept.

    Returns:
        200: Return updated
        400: Invalid input
        404: Return not found
    """
    try:
        draft = ReturnDraft.from_dict(request.get_json(silent=True), return_id=return_id)
        record = return_service.submit_return(draft, session=g.session, flags=g.flags)
        return jsonify({"return": record.to_dict()}), 200

    except Exception as e:
        return _mutation_error(e, "update return")


@returns_bp.post("/<int:return_id>/status")
@with_session
def change_return_status_route(return_id: int):
    """
    Move a return through its lifecycle.

    Request body:
    {
        "status": "approved"
    }

    Returns:
        200: Status changed
        400: Unknown status or transition not allowed
        404: Return not found
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Invalid JSON payload"}), 400
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        record = return_service.change_return_status(return_id, status, session=g.session, flags=g.flags)
        return jsonify({"return": record.to_dict()}), 200

    except Exception as e:
        return _mutation_error(e, "change return status")


@returns_bp.delete("/<int:return_id>")
@with_session
def delete_return_route(return_id: int):
    try:
        return_service.delete_return(return_id, session=g.session, flags=g.flags)
        return jsonify({"deleted": return_id}), 200

    except Exception as e:
        return _mutation_error(e, "delete return")
