# Overview: Service-layer operations for payments; lookup, checkout initiation, verification.

"""
Payment Service

WHY: Each purchase carries one Payment row that tracks the gateway attempt.
The webhook reconciler needs to find that row from whatever identifiers the
gateway sent; buyers need to start a hosted checkout and check its status.

LOOKUP ORDER (first match wins):
1. gateway payment intent id
2. purchase_id carried in webhook metadata
3. gateway transaction id (checkout session / payment id)
"""

from __future__ import annotations

from ..extensions import db
from ..models import Payment, Purchase, User
from ..models.orders import PAYMENT_PENDING, PURCHASE_PENDING
from storefront.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .paymongo_client import GatewayError, PayMongoClient


class PaymentError(Exception):
    """Raised for payment operation errors."""
    pass


class PaymentNotFoundError(PaymentError):
    pass


# =============================================================================
# LOOKUP
# =============================================================================

def _coerce_id(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def resolve_payment(payment_intent_id: str | None, metadata: dict | None, transaction_id: str | None, lock: bool = False) -> Payment | None:
    """
    Find the Payment a gateway event refers to.

    Returns None when nothing matches; callers decide how to report that.
    """
    def _query():
        query = db.session.query(Payment)
        return lock_for_update(query) if lock else query

    if payment_intent_id:
        payment = _query().filter(Payment.payment_intent_id == payment_intent_id).order_by(Payment.id.desc()).first()
        if payment:
            return payment

    purchase_id = _coerce_id((metadata or {}).get("purchase_id"))
    if purchase_id is not None:
        payment = _query().filter(Payment.purchase_id == purchase_id).order_by(Payment.id.desc()).first()
        if payment:
            return payment

    if transaction_id:
        payment = _query().filter(Payment.transaction_id == transaction_id).order_by(Payment.id.desc()).first()
        if payment:
            return payment

    return None


def get_payment(payment_id: int, actor: User) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise PaymentNotFoundError(f"Payment {payment_id} not found")
    if not actor.is_admin and payment.purchase.user_id != actor.id:
        raise PaymentNotFoundError(f"Payment {payment_id} not found")
    return payment


# =============================================================================
# CHECKOUT
# =============================================================================

def start_checkout(purchase_id: int, actor: User, config, client: PayMongoClient) -> dict:
    """
    Create a hosted checkout session for a pending purchase.

    The checkout session id becomes Payment.transaction_id and its payment
    intent id Payment.payment_intent_id, so the webhook can find the row.

    Returns:
        {"checkout_url": str, "payment": Payment}

    Raises:
        PaymentNotFoundError: purchase missing or not owned by actor
        PaymentError: purchase not pending, or the gateway call failed
    """
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None or purchase.user_id != actor.id:
        raise PaymentNotFoundError(f"Purchase {purchase_id} not found")
    if purchase.status != PURCHASE_PENDING:
        raise PaymentError(f"Cannot pay for a purchase that is {purchase.status}")

    base = config.frontend_url.rstrip("/")
    try:
        session = client.create_checkout_session(
            amount_cents=purchase.total_cents,
            currency=config.currency,
            description=f"Order #{purchase.id}",
            metadata={"purchase_id": purchase.id, "user_id": actor.id, "type": purchase.type},
            success_url=f"{base}/payment/success?purchase_id={purchase.id}",
            cancel_url=f"{base}/payment/cancelled?purchase_id={purchase.id}",
        )
    except GatewayError as exc:
        raise PaymentError(f"Failed to create checkout session: {exc}")

    if not session.get("id") or not session.get("checkout_url"):
        raise PaymentError("Failed to create checkout session")

    def _op():
        payment = lock_for_update(
            db.session.query(Payment).filter_by(purchase_id=purchase.id).order_by(Payment.id.desc())
        ).first()
        if payment is None:
            payment = Payment(
                purchase_id=purchase.id,
                amount_cents=purchase.total_cents,
                currency=config.currency,
                status=PAYMENT_PENDING,
                payment_method="paymongo",
                created_at=utcnow(),
            )
            db.session.add(payment)
        payment.transaction_id = session["id"]
        if session.get("payment_intent_id"):
            payment.payment_intent_id = session["payment_intent_id"]
        payment.gateway_metadata = {"checkout_session": session.get("raw")}
        payment.updated_at = utcnow()
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    return {"checkout_url": session["checkout_url"], "payment": payment}


def verify_payment(payment_id: int, actor: User, client: PayMongoClient) -> dict:
    """
    Ask the gateway for the current state of a payment's intent. Read-only.

    State changes still only happen through the webhook.
    """
    payment = get_payment(payment_id, actor)
    if not payment.payment_intent_id:
        return {"payment": payment, "gateway_status": None}
    try:
        intent = client.retrieve_payment_intent(payment.payment_intent_id)
    except GatewayError as exc:
        raise PaymentError(f"Failed to verify payment: {exc}")
    return {"payment": payment, "gateway_status": intent.get("status")}
