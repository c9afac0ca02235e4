# Overview: Flask API routes for payments; hosted checkout and status checks.

# backend/storefront/routes/payments.py
"""
Payment API Routes

WHY: Buyers pay through a PayMongo hosted checkout. These routes only start
the checkout and read status back; the webhook is what marks payments paid.
"""

from flask import Blueprint, jsonify, g, current_app

from ..config import get_commerce_config
from ..services import payment_service
from ..services.payment_service import PaymentError, PaymentNotFoundError
from ..services.paymongo_client import get_gateway_client
from ..decorators import require_auth


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/purchases/<int:purchase_id>/checkout")
@require_auth
def checkout_route(purchase_id: int):
    """
    Start a hosted checkout for a pending purchase.

    Returns:
        200: {"checkout_url": str, "payment": {...}}
        400: purchase not pending / gateway rejected the request
        404: purchase not found
    """
    try:
        result = payment_service.start_checkout(
            purchase_id,
            g.current_user,
            get_commerce_config(),
            get_gateway_client(),
        )
        return jsonify({
            "checkout_url": result["checkout_url"],
            "payment": result["payment"].to_dict(),
        }), 200

    except PaymentNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PaymentError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to start checkout for purchase %s", purchase_id)
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id, g.current_user)
        return jsonify({"payment": payment.to_dict()}), 200
    except PaymentNotFoundError as e:
        return jsonify({"error": str(e)}), 404


@payments_bp.get("/<int:payment_id>/verify")
@require_auth
def verify_payment_route(payment_id: int):
    """Read the gateway's view of the payment intent (no state change)."""
    try:
        result = payment_service.verify_payment(payment_id, g.current_user, get_gateway_client())
        return jsonify({
            "payment": result["payment"].to_dict(),
            "gateway_status": result["gateway_status"],
        }), 200

    except PaymentNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PaymentError as e:
        return jsonify({"error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Failed to verify payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500
