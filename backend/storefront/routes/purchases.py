# Overview: Flask API routes for purchases; parses input and returns JSON responses.

# backend/storefront/routes/purchases.py
"""
Purchase API Routes

WHY: Buyers create product orders priced on the server, follow them
through the lifecycle, cancel while pending and confirm receipt.

DESIGN:
- Client-supplied prices are ignored; totals come from pricing_service
- Payment outcomes never arrive here; they come from the webhook
- Status changes by admins live under /api/admin
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..config import get_commerce_config
from ..services import purchase_service
from ..services.purchase_service import (
    PurchaseError,
    PurchaseForbiddenError,
    PurchaseNotFoundError,
    PurchaseStateError,
)
from ..decorators import require_auth


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


def purchase_error_response(e: PurchaseError):
    """Map the purchase error hierarchy onto HTTP status codes."""
    if isinstance(e, PurchaseNotFoundError):
        status = 404
    elif isinstance(e, PurchaseForbiddenError):
        status = 403
    elif isinstance(e, PurchaseStateError):
        status = 409
    else:
        status = 400
    body = {"error": str(e)}
    if e.details:
        body["details"] = e.details
    return jsonify(body), status


# =============================================================================
# CREATION
# =============================================================================

@purchases_bp.post("/")
@require_auth
def create_purchase_route():
    """
    Create a pending product purchase.

    Request body:
    {
        "items": [{"variant_id": 3, "quantity": 2}]
    }

    Returns:
        201: {"purchase": {...}, "payment": {...}}
        400: invalid items, incomplete address, insufficient stock (details)
        403: admin or suspended account
    """
    try:
        data = request.get_json(silent=True) or {}
        purchase, payment = purchase_service.create_product_purchase(
            g.current_user.id,
            data.get("items"),
            get_commerce_config(),
        )
        return jsonify({"purchase": purchase.to_dict(), "payment": payment.to_dict()}), 201

    except PurchaseError as e:
        return purchase_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@purchases_bp.get("/")
@require_auth
def list_purchases_route():
    """Optional query: ?type=product|ticket"""
    purchases = purchase_service.list_user_purchases(g.current_user.id, request.args.get("type"))
    return jsonify({"purchases": [p.to_dict() for p in purchases]}), 200


@purchases_bp.get("/<int:purchase_id>")
@require_auth
def get_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.get_purchase(purchase_id, g.current_user)
        data = purchase.to_dict()
        data["payments"] = [p.to_dict() for p in purchase.payments]
        return jsonify({"purchase": data}), 200
    except PurchaseError as e:
        return purchase_error_response(e)


# =============================================================================
# BUYER ACTIONS
# =============================================================================

@purchases_bp.put("/<int:purchase_id>/cancel")
@require_auth
def cancel_purchase_route(purchase_id: int):
    """
    Cancel a purchase.

    Owners may cancel only while pending. Each cancellation counts toward
    automatic suspension.
    """
    try:
        purchase = purchase_service.cancel_purchase(purchase_id, g.current_user, get_commerce_config())
        return jsonify({"purchase": purchase.to_dict()}), 200
    except PurchaseError as e:
        return purchase_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel purchase %s", purchase_id)
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.put("/<int:purchase_id>/received")
@require_auth
def mark_received_route(purchase_id: int):
    """Owner confirms a delivered order arrived (delivered -> completed)."""
    try:
        purchase = purchase_service.mark_received(purchase_id, g.current_user)
        return jsonify({"purchase": purchase.to_dict()}), 200
    except PurchaseError as e:
        return purchase_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark purchase %s received", purchase_id)
        return jsonify({"error": "Internal server error"}), 500
