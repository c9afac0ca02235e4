# Overview: Flask API routes for the shopping cart.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import cart_service
from ..services.cart_service import CartError
from ..decorators import require_auth


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("/")
@require_auth
def list_cart_route():
    items = cart_service.list_cart(g.current_user.id)
    return jsonify({"items": [i.to_dict() for i in items]}), 200


@cart_bp.post("/")
@require_auth
def add_to_cart_route():
    """Request body: {"variant_id": int, "quantity": int}"""
    try:
        data = request.get_json(silent=True) or {}
        item = cart_service.add_to_cart(g.current_user.id, data.get("variant_id"), data.get("quantity", 1))
        return jsonify({"item": item.to_dict()}), 201
    except CartError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add to cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/<int:item_id>")
@require_auth
def remove_from_cart_route(item_id: int):
    try:
        cart_service.remove_from_cart(g.current_user.id, item_id)
        return jsonify({"message": "Removed"}), 200
    except CartError as e:
        return jsonify({"error": str(e)}), 404


@cart_bp.delete("/")
@require_auth
def clear_cart_route():
    removed = cart_service.clear_cart(g.current_user.id)
    return jsonify({"removed": removed}), 200
