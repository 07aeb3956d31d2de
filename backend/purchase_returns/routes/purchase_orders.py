# Overview: Flask API routes for purchase-order return views and forced reconciliation.

from flask import Blueprint, request, jsonify, current_app

from ..services import purchase_order_service
from ..services.concurrency import StoreError
from ..services.purchase_order_service import PurchaseOrderNotFoundError
from ..validation import ValidationError, parse_optional_id


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.get("/<int:purchase_order_id>/items")
def purchase_order_items_route(purchase_order_id: int):
    """
    Order lines with returned and still-returnable quantities.

    Query parameters:
    - exclude_return_id: leave this return out (the form editing it)

    Returns:
        200: {"purchase_order": {...}, "items": [...]}
        404: Purchase order not found
    """
    try:
        exclude_return_id = parse_optional_id(request.args.get("exclude_return_id"), "exclude_return_id")
        views = purchase_order_service.describe_purchase_order(purchase_order_id, exclude_return_id)
        order = purchase_order_service.get_purchase_order(purchase_order_id)
        return jsonify({
            "purchase_order": order.to_dict(),
            "items": [view.to_dict() for view in views],
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PurchaseOrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to describe purchase order items")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:purchase_order_id>/reconcile")
def reconcile_purchase_order_route(purchase_order_id: int):
    """
    Re-run return reconciliation for one order.

    Returns:
        200: {"reconciled": true, "adjustment": {...}} or {"reconciled": false} when nothing needed writing
        404: Purchase order not found
        503: Store failure
    """
    try:
        purchase_order_service.require_purchase_order(purchase_order_id)
        adjustment = purchase_order_service.sync_purchase_order_returns(purchase_order_id)
        if adjustment is None:
            return jsonify({"reconciled": False, "purchase_order_id": purchase_order_id}), 200
        return jsonify({
            "reconciled": True,
            "purchase_order_id": purchase_order_id,
            "adjustment": adjustment.to_dict(),
        }), 200

    except PurchaseOrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except StoreError:
        current_app.logger.exception("Failed to reconcile purchase order %s", purchase_order_id)
        return jsonify({"error": "Store unavailable"}), 503
    except Exception:
        current_app.logger.exception("Failed to reconcile purchase order %s", purchase_order_id)
        return jsonify({"error": "Internal server error"}), 500
