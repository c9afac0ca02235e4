# backend/storefront/routes/system.py
"""
System health endpoint.

Checks the database and reports whether the configuration needed for
payments and shipping is in place.
"""

import time
from flask import Blueprint, current_app

from ..config import get_commerce_config
from ..extensions import db
from ..models import ShippingPrice, TaxPrice, User
from storefront.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_commerce_config() -> dict:
    """
    Degraded (not unhealthy) when webhooks or pricing are not configured:
    the API still serves reads, but payments cannot be reconciled.
    """
    try:
        config = get_commerce_config()
        warnings = []
        if not config.webhook_secret:
            warnings.append("PAYMONGO_WEBHOOK_SECRET is not set")
        if not config.paymongo_secret_key:
            warnings.append("PAYMONGO_SECRET_KEY is not set")
        shipping_regions = db.session.query(ShippingPrice).filter_by(is_active=True).count()
        if shipping_regions == 0:
            warnings.append("No active shipping prices")
        active_taxes = db.session.query(TaxPrice).filter_by(is_active=True).count()

        result = {
            "status": "degraded" if warnings else "healthy",
            "details": {
                "origin_city": config.origin_city or None,
                "origin_province": config.origin_province or None,
                "active_shipping_regions": shipping_regions,
                "active_taxes": active_taxes,
                "relay_enabled": bool(config.relay_url),
            },
        }
        if warnings:
            result["warning"] = "; ".join(warnings)
        return result
    except Exception:
        current_app.logger.exception("Commerce configuration check failed")
        return {"status": "unhealthy", "error": "Configuration error"}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    config_health = check_commerce_config()

    all_checks = [database_health, config_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "commerce_config": config_health,
        },
    }, http_status
