# Overview: Service-layer operations for purchases; creation, status transitions, cancellation.

"""
Purchase Lifecycle Service

WHY: A purchase moves through a fixed status lifecycle. Some transitions
are driven by the payment gateway (pending -> processing/cancelled), the
rest by admins and the buyer. Every transition is a guarded UPDATE on the
current status so two actors can never both move the same purchase.

LIFECYCLE:
    pending    -> processing | cancelled | failed
    processing -> shipped | completed | cancelled
    shipped    -> delivered
    delivered  -> completed

Ticket purchases never enter shipped/delivered.

CANCELLATION:
- owner: only while pending
- admin: while pending or processing
- cancelling a processing purchase restores stock / cancels its tickets
- every move into cancelled runs the suspension policy for the owner
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Purchase, PurchaseItem, Payment, ProductVariant, Profile, Ticket, User
from ..models.orders import (
    PAYMENT_CANCELLED,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PURCHASE_CANCELLED,
    PURCHASE_COMPLETED,
    PURCHASE_DELIVERED,
    PURCHASE_FAILED,
    PURCHASE_PENDING,
    PURCHASE_PROCESSING,
    PURCHASE_SHIPPED,
    PURCHASE_STATUSES,
    PURCHASE_TYPE_PRODUCT,
    PURCHASE_TYPE_TICKET,
)
from ..models.events import SEAT_HOLDING_STATUSES, TICKET_STATUS_CANCELLED
from storefront.time_utils import utcnow
from .concurrency import conditional_update, lock_for_update, run_with_retry
from .pricing_service import PriceLine, quote_for_address
from .stock_service import has_stock, increment_stock
from .suspension_service import enforce_suspension_policy
from . import mail_service, notification_service


class PurchaseError(Exception):
    """Raised for purchase operation errors (400)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class PurchaseNotFoundError(PurchaseError):
    """Purchase does not exist or is not visible to the caller (404)."""
    pass


class PurchaseForbiddenError(PurchaseError):
    """Caller may not act on this purchase (403)."""
    pass


class PurchaseStateError(PurchaseError):
    """Transition not allowed from the current status (409)."""
    pass


# =============================================================================
# TRANSITION TABLE
# =============================================================================

TRANSITIONS = {
    PURCHASE_PENDING: {PURCHASE_PROCESSING, PURCHASE_CANCELLED, PURCHASE_FAILED},
    PURCHASE_PROCESSING: {PURCHASE_SHIPPED, PURCHASE_COMPLETED, PURCHASE_CANCELLED},
    PURCHASE_SHIPPED: {PURCHASE_DELIVERED},
    PURCHASE_DELIVERED: {PURCHASE_COMPLETED},
}

# Only payment outcomes may take a purchase out of pending (except cancellation)
GATEWAY_ONLY_TRANSITIONS = {
    (PURCHASE_PENDING, PURCHASE_PROCESSING),
    (PURCHASE_PENDING, PURCHASE_FAILED),
}

FULFILLMENT_STATUSES = {PURCHASE_SHIPPED, PURCHASE_DELIVERED}

OWNER_CANCELLABLE = {PURCHASE_PENDING}
ADMIN_CANCELLABLE = {PURCHASE_PENDING, PURCHASE_PROCESSING}


def can_transition(purchase_type: str, from_status: str, to_status: str) -> bool:
    if to_status not in TRANSITIONS.get(from_status, set()):
        return False
    if purchase_type == PURCHASE_TYPE_TICKET and to_status in FULFILLMENT_STATUSES:
        return False
    return True


def transition(purchase: Purchase, from_statuses, to_status: str, **values) -> bool:
    """
    Move a purchase to to_status only if it is currently in from_statuses.

    Does NOT commit. Returns True if this call made the change.
    """
    if isinstance(from_statuses, str):
        from_statuses = (from_statuses,)
    now = utcnow()
    values.setdefault("updated_at", now)
    if to_status == PURCHASE_CANCELLED:
        values.setdefault("cancelled_at", now)
    if to_status == PURCHASE_COMPLETED:
        values.setdefault("completed_at", now)

    stmt = (
        update(Purchase)
        .where(Purchase.id == purchase.id, Purchase.status.in_(tuple(from_statuses)))
        .values(status=to_status, **values)
    )
    won = conditional_update(stmt) == 1
    db.session.expire(purchase)
    return won


# =============================================================================
# CREATION
# =============================================================================

def _normalize_items(items) -> dict[int, int]:
    """Validate request items and merge duplicate variants into {variant_id: qty}."""
    if not isinstance(items, list) or not items:
        raise PurchaseError("items must be a non-empty list")

    merged: dict[int, int] = {}
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise PurchaseError(f"items[{index}] must be an object")
        variant_id = raw.get("variant_id")
        quantity = raw.get("quantity")
        if isinstance(variant_id, bool) or not isinstance(variant_id, int):
            raise PurchaseError(f"items[{index}].variant_id must be an integer")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise PurchaseError(f"items[{index}].quantity must be a positive integer")
        merged[variant_id] = merged.get(variant_id, 0) + quantity
    return merged


def _require_buyer(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise PurchaseNotFoundError(f"User {user_id} not found")
    if user.is_admin:
        raise PurchaseForbiddenError("Admins cannot place orders")
    if user.is_suspended:
        raise PurchaseForbiddenError("Your account is suspended. Please contact support.")
    return user


def create_product_purchase(user_id: int, items, config) -> tuple[Purchase, Payment]:
    """
    Create a pending product purchase priced server-side.

    Client-supplied prices are ignored. Stock is checked here but only
    decremented once payment is confirmed.

    Args:
        user_id: Buyer
        items: [{"variant_id": int, "quantity": int, "price": ignored}]
        config: CommerceConfig

    Returns:
        (purchase, payment) both pending

    Raises:
        PurchaseError: invalid items, incomplete address, or insufficient stock
        PurchaseForbiddenError: admin or suspended buyer
    """
    wanted = _normalize_items(items)

    def _op():
        _require_buyer(user_id)

        profile = db.session.query(Profile).filter_by(user_id=user_id).first()
        if profile is None or profile.missing_address_fields():
            missing = profile.missing_address_fields() if profile else list(Profile.REQUIRED_ADDRESS_FIELDS)
            raise PurchaseError("Please complete your shipping address before checkout", details={"missing": missing})

        variants = {
            v.id: v
            for v in db.session.query(ProductVariant).filter(ProductVariant.id.in_(list(wanted))).all()
        }
        lines = []
        shortages = []
        for variant_id, qty in wanted.items():
            variant = variants.get(variant_id)
            if variant is None or not variant.product.is_active:
                raise PurchaseError(f"Variant {variant_id} not found")
            if not has_stock(variant_id, qty):
                shortages.append({"variant_id": variant_id, "sku": variant.sku, "requested": qty, "available": variant.stock})
            lines.append((variant, qty))
        if shortages:
            raise PurchaseError("Insufficient stock", details={"shortages": shortages})

        quote = quote_for_address(
            [PriceLine(unit_price_cents=v.price_cents, quantity=q) for v, q in lines],
            profile.city,
            profile.province,
            config,
        )
        breakdown = quote.breakdown

        purchase = Purchase(
            user_id=user_id,
            type=PURCHASE_TYPE_PRODUCT,
            status=PURCHASE_PENDING,
            subtotal_cents=breakdown.subtotal_cents,
            tax_cents=breakdown.tax_cents,
            shipping_cents=breakdown.shipping_cents,
            total_cents=breakdown.total_cents,
            shipping_address={
                "street": profile.street,
                "barangay": profile.barangay,
                "city": profile.city,
                "province": profile.province,
                "zipcode": profile.zipcode,
                "phone": profile.phone,
                "region": quote.region,
                "shipping_amount": breakdown.shipping_cents,
                "tax_amount": breakdown.tax_cents,
                "tax_rate": breakdown.tax_rate_bps,
                "subtotal": breakdown.subtotal_cents,
            },
            created_at=utcnow(),
        )
        db.session.add(purchase)
        db.session.flush()

        for variant, qty in lines:
            label = variant.product.name
            extras = " / ".join(x for x in (variant.size, variant.color) if x)
            db.session.add(PurchaseItem(
                purchase_id=purchase.id,
                variant_id=variant.id,
                description=f"{label} ({extras})" if extras else label,
                quantity=qty,
                unit_price_cents=variant.price_cents,
                line_total_cents=variant.price_cents * qty,
            ))

        payment = Payment(
            purchase_id=purchase.id,
            amount_cents=breakdown.total_cents,
            currency=config.currency,
            status=PAYMENT_PENDING,
            payment_method="paymongo",
            created_at=utcnow(),
        )
        db.session.add(payment)
        db.session.commit()
        return purchase, payment

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_purchase(purchase_id: int, actor: User) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None or (purchase.user_id != actor.id and not actor.is_admin):
        raise PurchaseNotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def list_user_purchases(user_id: int, purchase_type: str | None = None) -> list[Purchase]:
    query = db.session.query(Purchase).filter_by(user_id=user_id)
    if purchase_type:
        query = query.filter_by(type=purchase_type)
    return query.order_by(Purchase.created_at.desc(), Purchase.id.desc()).all()


def list_all_purchases(status: str | None = None, limit: int = 100, offset: int = 0) -> list[Purchase]:
    query = db.session.query(Purchase)
    if status:
        if status not in PURCHASE_STATUSES:
            raise PurchaseError(f"Invalid status: {status}")
        query = query.filter_by(status=status)
    return query.order_by(Purchase.created_at.desc(), Purchase.id.desc()).offset(offset).limit(limit).all()


# =============================================================================
# CANCELLATION
# =============================================================================

def _release_committed_resources(purchase: Purchase) -> None:
    """Undo what payment confirmation committed: restock items or cancel tickets."""
    if purchase.type == PURCHASE_TYPE_PRODUCT:
        for item in purchase.items:
            if item.variant_id is not None:
                increment_stock(item.variant_id, item.quantity)
    else:
        now = utcnow()
        (
            db.session.query(Ticket)
            .filter(Ticket.purchase_id == purchase.id, Ticket.status.in_(SEAT_HOLDING_STATUSES))
            .update({"status": TICKET_STATUS_CANCELLED, "cancelled_at": now}, synchronize_session=False)
        )


def cancel_purchase(purchase_id: int, actor: User, config) -> Purchase:
    """
    Cancel a purchase on behalf of its owner or an admin.

    Raises:
        PurchaseNotFoundError: missing, or not the actor's and actor is not admin
        PurchaseStateError: status does not allow cancellation by this actor
    """
    def _op():
        purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
        if purchase is None:
            raise PurchaseNotFoundError(f"Purchase {purchase_id} not found")

        is_owner = purchase.user_id == actor.id
        if not is_owner and not actor.is_admin:
            raise PurchaseForbiddenError("You can only cancel your own orders")

        allowed = ADMIN_CANCELLABLE if actor.is_admin else OWNER_CANCELLABLE
        previous = purchase.status
        if previous not in allowed:
            if actor.is_admin:
                raise PurchaseStateError(f"Cannot cancel a purchase that is {previous}")
            raise PurchaseStateError("Orders can only be cancelled while pending payment")

        if not transition(purchase, previous, PURCHASE_CANCELLED):
            raise PurchaseStateError("Purchase status changed, please retry")

        if previous == PURCHASE_PROCESSING:
            _release_committed_resources(purchase)

        (
            db.session.query(Payment)
            .filter(Payment.purchase_id == purchase.id, Payment.status.in_((PAYMENT_PENDING, PAYMENT_PROCESSING)))
            .update({"status": PAYMENT_CANCELLED, "updated_at": utcnow()}, synchronize_session=False)
        )
        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    current_app.logger.info("Purchase %s cancelled by user %s", purchase.id, actor.id)

    enforce_suspension_policy(purchase.user_id, config)
    _announce_status(purchase, PURCHASE_CANCELLED)
    return purchase


# =============================================================================
# ADMIN / OWNER STATUS UPDATES
# =============================================================================

def update_status(purchase_id: int, new_status: str, actor: User, config) -> Purchase:
    """
    Admin status change following the transition table.

    completed is only ever reached here or via mark_received.
    """
    if not actor.is_admin:
        raise PurchaseForbiddenError("Admin access required")
    if new_status not in PURCHASE_STATUSES:
        raise PurchaseError(f"Invalid status: {new_status}")
    if new_status == PURCHASE_CANCELLED:
        return cancel_purchase(purchase_id, actor, config)

    def _op():
        purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
        if purchase is None:
            raise PurchaseNotFoundError(f"Purchase {purchase_id} not found")

        current = purchase.status
        if (current, new_status) in GATEWAY_ONLY_TRANSITIONS:
            raise PurchaseStateError(f"{current} -> {new_status} is set by payment confirmation")
        if not can_transition(purchase.type, current, new_status):
            raise PurchaseStateError(f"Cannot change status from {current} to {new_status}")
        if not transition(purchase, current, new_status):
            raise PurchaseStateError("Purchase status changed, please retry")
        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    _announce_status(purchase, new_status)
    return purchase


def mark_received(purchase_id: int, actor: User) -> Purchase:
    """Owner confirms delivery: delivered -> completed. Admins are notified."""
    def _op():
        purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
        if purchase is None or purchase.user_id != actor.id:
            raise PurchaseNotFoundError(f"Purchase {purchase_id} not found")
        if purchase.status != PURCHASE_DELIVERED:
            raise PurchaseStateError("Only delivered orders can be marked as received")
        if not transition(purchase, PURCHASE_DELIVERED, PURCHASE_COMPLETED):
            raise PurchaseStateError("Purchase status changed, please retry")
        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    try:
        notification_service.notify_admins(
            "Order Received",
            f"Order #{purchase.id} was marked as received by {actor.name}.",
            metadata={"purchase_id": purchase.id},
        )
    except Exception:
        current_app.logger.exception("Failed to notify admins for purchase %s", purchase.id)
    return purchase


def _announce_status(purchase: Purchase, new_status: str) -> None:
    """Best-effort status notification and email; each isolated."""
    try:
        notification_service.notify_order_status(purchase, new_status)
    except Exception:
        current_app.logger.exception("Failed to create status notification for purchase %s", purchase.id)

    user = db.session.get(User, purchase.user_id)
    if user is not None:
        mail_service.send_order_status(user, purchase, new_status)
