# Overview: Flask API routes for catalog reads.

from flask import Blueprint, jsonify

from ..extensions import db
from ..models import Product


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/")
def list_products_route():
    products = db.session.query(Product).filter_by(is_active=True).order_by(Product.id).all()
    return jsonify({"products": [p.to_dict(include_variants=True) for p in products]}), 200


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product.to_dict(include_variants=True)}), 200
