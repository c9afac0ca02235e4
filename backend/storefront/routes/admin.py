# Overview: Flask API routes for admin operations; order fulfilment, pricing reference data, stock, users, events.

# backend/storefront/routes/admin.py
"""
Admin API Routes

WHY: Admins move paid orders through fulfilment, maintain the shipping and
tax tables the pricing engine reads, adjust stock, lift suspensions and
manage events and door scans.

SECURITY:
- Every route requires an authenticated admin session
- pending -> processing/failed is reserved for payment confirmation
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..config import get_commerce_config
from ..extensions import db
from ..models import ShippingPrice, TaxPrice
from ..services import (
    pricing_service,
    purchase_service,
    stock_service,
    suspension_service,
    ticket_service,
)
from ..services.pricing_service import PricingError
from ..services.purchase_service import PurchaseError
from ..services.stock_service import StockError
from ..services.suspension_service import SuspensionError
from ..services.ticket_service import TicketError
from ..decorators import require_auth, require_admin
from .purchases import purchase_error_response
from .events import ticket_error_response


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


# =============================================================================
# PURCHASES
# =============================================================================

@admin_bp.get("/purchases")
@require_auth
@require_admin
def list_purchases_route():
    """Query: ?status=processing&limit=100&offset=0"""
    try:
        purchases = purchase_service.list_all_purchases(
            status=request.args.get("status"),
            limit=min(request.args.get("limit", 100, type=int) or 100, 500),
            offset=max(request.args.get("offset", 0, type=int) or 0, 0),
        )
        return jsonify({"purchases": [p.to_dict() for p in purchases]}), 200
    except PurchaseError as e:
        return purchase_error_response(e)


@admin_bp.put("/purchases/<int:purchase_id>/status")
@require_auth
@require_admin
def update_purchase_status_route(purchase_id: int):
    """
    Move a purchase along the lifecycle.

    Request body: {"status": "shipped"}

    Returns:
        200: updated purchase
        400: unknown status
        404: purchase not found
        409: transition not allowed from the current status
    """
    try:
        data = request.get_json(silent=True) or {}
        new_status = data.get("status")
        if not new_status:
            return jsonify({"error": "status required"}), 400
        purchase = purchase_service.update_status(purchase_id, new_status, g.current_user, get_commerce_config())
        return jsonify({"purchase": purchase.to_dict()}), 200

    except PurchaseError as e:
        return purchase_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update status of purchase %s", purchase_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SHIPPING / TAX REFERENCE DATA
# =============================================================================

@admin_bp.get("/shipping-prices")
@require_auth
@require_admin
def list_shipping_prices_route():
    rows = db.session.query(ShippingPrice).order_by(ShippingPrice.region).all()
    return jsonify({"shipping_prices": [r.to_dict() for r in rows]}), 200


@admin_bp.put("/shipping-prices")
@require_auth
@require_admin
def upsert_shipping_price_route():
    """Request body: {"region": "visayas", "price_cents": 15000, "is_active": true}"""
    try:
        data = request.get_json(silent=True) or {}
        row = pricing_service.upsert_shipping_price(
            data.get("region"),
            data.get("price_cents"),
            data.get("is_active", True),
            config=get_commerce_config(),
        )
        return jsonify({"shipping_price": row.to_dict()}), 200
    except (PricingError, TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400


@admin_bp.delete("/shipping-prices/<int:shipping_price_id>")
@require_auth
@require_admin
def delete_shipping_price_route(shipping_price_id: int):
    try:
        pricing_service.delete_shipping_price(shipping_price_id)
        return jsonify({"message": "Deleted"}), 200
    except PricingError as e:
        return jsonify({"error": str(e)}), 404


@admin_bp.get("/tax-prices")
@require_auth
@require_admin
def list_tax_prices_route():
    rows = db.session.query(TaxPrice).order_by(TaxPrice.name).all()
    return jsonify({"tax_prices": [r.to_dict() for r in rows]}), 200


@admin_bp.put("/tax-prices")
@require_auth
@require_admin
def upsert_tax_price_route():
    """Request body: {"name": "VAT", "rate_bps": 1200, "is_active": true}"""
    try:
        data = request.get_json(silent=True) or {}
        row = pricing_service.upsert_tax_price(
            data.get("name"),
            data.get("rate_bps"),
            data.get("is_active", True),
        )
        return jsonify({"tax_price": row.to_dict()}), 200
    except (PricingError, TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400


@admin_bp.delete("/tax-prices/<int:tax_price_id>")
@require_auth
@require_admin
def delete_tax_price_route(tax_price_id: int):
    try:
        pricing_service.delete_tax_price(tax_price_id)
        return jsonify({"message": "Deleted"}), 200
    except PricingError as e:
        return jsonify({"error": str(e)}), 404


# =============================================================================
# STOCK
# =============================================================================

@admin_bp.post("/variants/<int:variant_id>/stock")
@require_auth
@require_admin
def adjust_stock_route(variant_id: int):
    """Request body: {"delta": -3}"""
    try:
        data = request.get_json(silent=True) or {}
        new_stock = stock_service.adjust_stock(variant_id, data.get("delta"))
        return jsonify({"variant_id": variant_id, "stock": new_stock}), 200
    except StockError as e:
        return jsonify({"error": str(e)}), 400


# =============================================================================
# USERS
# =============================================================================

@admin_bp.post("/users/<int:user_id>/unsuspend")
@require_auth
@require_admin
def unsuspend_user_route(user_id: int):
    try:
        user = suspension_service.unsuspend_user(user_id)
        current_app.logger.info("User %s unsuspended by admin %s", user_id, g.current_user.id)
        return jsonify({"user": user.to_dict()}), 200
    except SuspensionError as e:
        return jsonify({"error": str(e)}), 400


@admin_bp.get("/users/<int:user_id>/cancellations")
@require_auth
@require_admin
def cancellation_count_route(user_id: int):
    count = suspension_service.get_cancellation_count(user_id)
    return jsonify({
        "user_id": user_id,
        "cancellations": count,
        "threshold": get_commerce_config().suspension_threshold,
    }), 200


# =============================================================================
# EVENTS / TICKETS
# =============================================================================

@admin_bp.post("/events")
@require_auth
@require_admin
def create_event_route():
    """
    Request body:
    {
        "title": "Launch Night",
        "venue": "Cebu City",
        "starts_at": "2026-12-01T18:00:00Z",
        "ticket_price_cents": 50000,
        "max_tickets": 200
    }
    """
    try:
        event = ticket_service.create_event(request.get_json(silent=True) or {})
        return jsonify({"event": event.to_dict()}), 201
    except TicketError as e:
        return ticket_error_response(e)


@admin_bp.put("/tickets/<int:ticket_id>/status")
@require_auth
@require_admin
def update_ticket_status_route(ticket_id: int):
    try:
        data = request.get_json(silent=True) or {}
        ticket = ticket_service.update_ticket_status(ticket_id, data.get("status"))
        return jsonify({"ticket": ticket.to_dict()}), 200
    except TicketError as e:
        return ticket_error_response(e)


@admin_bp.post("/tickets/scan")
@require_auth
@require_admin
def scan_ticket_route():
    """Request body: {"qr_payload": "TKT-...:<event>:<user>:<sig>"}"""
    data = request.get_json(silent=True) or {}
    qr_payload = data.get("qr_payload")
    if not qr_payload:
        return jsonify({"error": "qr_payload required"}), 400
    try:
        ticket = ticket_service.scan_ticket(qr_payload, get_commerce_config())
        return jsonify({"ticket": ticket.to_dict()}), 200
    except TicketError as e:
        return ticket_error_response(e)
