# Overview: Service-layer operations for variant stock; atomic check-and-decrement and increments.

"""
Stock Ledger

WHY: Variant stock is the contended resource under concurrent checkouts.
Decrements are a single guarded UPDATE so two transactions can never both
take the last unit, on any backend.

DESIGN:
- decrement_stock / increment_stock run inside the caller's transaction
  (the webhook reconciler commits stock together with payment state)
- *_now variants commit on their own with retry, for admin adjustments
"""

from sqlalchemy import update

from ..extensions import db
from ..models import ProductVariant
from .concurrency import conditional_update, run_with_retry


class StockError(Exception):
    """Raised for invalid stock operations."""
    pass


def _validate_qty(qty: int) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
        raise StockError("Quantity must be a positive integer")
    return qty


def get_stock(variant_id: int) -> int | None:
    """Current stock for a variant, or None if the variant does not exist."""
    return db.session.query(ProductVariant.stock).filter(ProductVariant.id == variant_id).scalar()


def has_stock(variant_id: int, qty: int) -> bool:
    """True when the variant exists and stock >= qty."""
    _validate_qty(qty)
    stock = get_stock(variant_id)
    return stock is not None and stock >= qty


def decrement_stock(variant_id: int, qty: int) -> bool:
    """
    Subtract qty only if stock >= qty. Does NOT commit.

    Returns:
        True if exactly one row was decremented, False if stock was
        insufficient (or the variant is missing). Nothing changes on False.
    """
    _validate_qty(qty)
    stmt = (
        update(ProductVariant)
        .where(ProductVariant.id == variant_id, ProductVariant.stock >= qty)
        .values(stock=ProductVariant.stock - qty)
    )
    return conditional_update(stmt) == 1


def increment_stock(variant_id: int, qty: int) -> None:
    """Add qty back to a variant (returns, cancellations, restocks). Does NOT commit."""
    _validate_qty(qty)
    stmt = (
        update(ProductVariant)
        .where(ProductVariant.id == variant_id)
        .values(stock=ProductVariant.stock + qty)
    )
    if conditional_update(stmt) != 1:
        raise StockError(f"Variant {variant_id} not found")


def decrement_stock_now(variant_id: int, qty: int) -> bool:
    """Committed, retried decrement for stand-alone use."""
    def _op():
        ok = decrement_stock(variant_id, qty)
        if ok:
            db.session.commit()
        else:
            db.session.rollback()
        return ok
    return run_with_retry(_op)


def increment_stock_now(variant_id: int, qty: int) -> None:
    """Committed, retried increment for stand-alone use."""
    def _op():
        increment_stock(variant_id, qty)
        db.session.commit()
    run_with_retry(_op)


def adjust_stock(variant_id: int, delta: int) -> int:
    """
    Apply a signed admin adjustment and return the new stock level.

    Raises:
        StockError: delta is zero, the variant is missing, or a negative
        delta exceeds current stock
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise StockError("delta must be a non-zero integer")
    if get_stock(variant_id) is None:
        raise StockError(f"Variant {variant_id} not found")

    if delta > 0:
        increment_stock_now(variant_id, delta)
    elif not decrement_stock_now(variant_id, -delta):
        raise StockError("Insufficient stock for adjustment")

    return get_stock(variant_id)
