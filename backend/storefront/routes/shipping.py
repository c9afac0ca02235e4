# Overview: Flask API routes for shipping region resolution and quotes.

from flask import Blueprint, request, jsonify

from ..config import get_commerce_config
from ..services import pricing_service
from ..services.pricing_service import PriceLine, PricingError
from ..services.region_service import resolve_region


shipping_bp = Blueprint("shipping", __name__, url_prefix="/api/shipping")


@shipping_bp.get("/resolve")
def resolve_route():
    """
    Resolve the shipping region for an address.

    Query: ?city=Mandaue&province=Cebu
    Returns the region tag and its active shipping price (or null).
    """
    config = get_commerce_config()
    region = resolve_region(
        request.args.get("city"),
        request.args.get("province"),
        origin_city=config.origin_city,
        origin_province=config.origin_province,
        default_region=config.default_region,
    )
    price = pricing_service.shipping_price_for_region(region)
    return jsonify({
        "region": region,
        "shipping_price": price.to_dict() if price else None,
    }), 200


@shipping_bp.post("/quote")
def quote_route():
    """
    Price a basket for an address without creating anything.

    Request body:
    {
        "city": "Mandaue", "province": "Cebu",
        "lines": [{"unit_price_cents": 50000, "quantity": 2}]
    }
    """
    data = request.get_json(silent=True) or {}
    raw_lines = data.get("lines")
    if not isinstance(raw_lines, list) or not raw_lines:
        return jsonify({"error": "lines must be a non-empty list"}), 400
    try:
        lines = [PriceLine(unit_price_cents=int(l["unit_price_cents"]), quantity=int(l["quantity"])) for l in raw_lines]
        quote = pricing_service.quote_for_address(lines, data.get("city"), data.get("province"), get_commerce_config())
    except (KeyError, TypeError, ValueError):
        return jsonify({"error": "Each line needs integer unit_price_cents and quantity"}), 400
    except PricingError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"quote": quote.to_dict()}), 200
