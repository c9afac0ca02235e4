# Overview: Service-layer operations for shopping carts.

from __future__ import annotations

from ..extensions import db
from ..models import CartItem, ProductVariant, User
from .stock_service import get_stock


class CartError(Exception):
    """Raised for cart operation errors."""
    pass


def list_cart(user_id: int) -> list[CartItem]:
    return db.session.query(CartItem).filter_by(user_id=user_id).order_by(CartItem.id).all()


def add_to_cart(user_id: int, variant_id: int, quantity: int = 1) -> CartItem:
    """
    Add a variant to the cart, merging with an existing line.

    The merged quantity is checked against current stock; stock itself is
    not reserved until payment is confirmed.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise CartError("quantity must be a positive integer")

    user = db.session.get(User, user_id)
    if user is None:
        raise CartError(f"User {user_id} not found")
    if user.is_admin:
        raise CartError("Admins cannot add items to a cart")

    variant = db.session.get(ProductVariant, variant_id)
    if variant is None or not variant.product.is_active:
        raise CartError(f"Variant {variant_id} not found")

    item = db.session.query(CartItem).filter_by(user_id=user_id, variant_id=variant_id).first()
    new_qty = quantity + (item.quantity if item else 0)
    if (get_stock(variant_id) or 0) < new_qty:
        raise CartError(f"Insufficient stock for {variant.sku}")

    if item is None:
        item = CartItem(user_id=user_id, variant_id=variant_id, quantity=new_qty)
        db.session.add(item)
    else:
        item.quantity = new_qty
    db.session.commit()
    return item


def remove_from_cart(user_id: int, item_id: int) -> None:
    item = db.session.query(CartItem).filter_by(id=item_id, user_id=user_id).first()
    if item is None:
        raise CartError(f"Cart item {item_id} not found")
    db.session.delete(item)
    db.session.commit()


def clear_cart(user_id: int) -> int:
    """Delete every cart line for a user. Returns the number removed."""
    count = db.session.query(CartItem).filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.commit()
    return count
