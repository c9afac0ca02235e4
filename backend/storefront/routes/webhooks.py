# Overview: Flask API route receiving PayMongo webhooks; verifies, parses and reconciles.

# backend/storefront/routes/webhooks.py
"""
PayMongo Webhook Endpoint

Responses:
- 200: processed, already processed, or ignored event type
- 400: body is not JSON or not a recognizable gateway event
- 401: signature missing or invalid
- 404: no payment matches the event
- 409: business rule violated (stock / seats), nothing applied
- 500: unexpected error (payload logged for manual review)

PayMongo retries non-2xx deliveries, so the 404/409/500 cases are retried
and reconciliation is idempotent.
"""

import json

from flask import Blueprint, request, jsonify, current_app

from ..config import get_commerce_config
from ..services import webhook_service
from ..services.webhook_service import (
    OUTCOME_NOT_FOUND,
    ReconciliationError,
    WebhookPayloadError,
)


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

SIGNATURE_HEADER = "Paymongo-Signature"


@webhooks_bp.post("/paymongo")
def paymongo_webhook_route():
    config = get_commerce_config()
    raw_body = request.get_data(cache=False)

    if not webhook_service.verify_signature(
        raw_body,
        request.headers.get(SIGNATURE_HEADER),
        config.webhook_secret,
        tolerance_seconds=config.webhook_tolerance_seconds,
    ):
        current_app.logger.warning("Rejected PayMongo webhook with invalid signature from %s", request.remote_addr)
        return jsonify({"error": "Invalid signature"}), 401

    try:
        payload = json.loads(raw_body)
    except ValueError:
        return jsonify({"error": "Invalid JSON payload"}), 400

    try:
        event = webhook_service.parse_gateway_event(payload)
    except WebhookPayloadError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = webhook_service.reconcile(event, config)
    except ReconciliationError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception(
            "Failed to process PayMongo webhook %s; payload: %s",
            event.event_id,
            raw_body.decode("utf-8", errors="replace"),
        )
        return jsonify({"error": "Internal server error"}), 500

    if result.outcome == OUTCOME_NOT_FOUND:
        return jsonify({"error": result.message, **result.to_dict()}), 404
    return jsonify({"status": "success", **result.to_dict()}), 200
