# Overview: Service-layer operations for PayMongo webhooks; signature check, event parsing, reconciliation.

"""
Webhook Reconciler

WHY: PayMongo reports payment outcomes asynchronously and may deliver the
same event more than once, in any order. This module turns one delivery
into Payment/Purchase/stock/ticket changes exactly once.

FLOW (payment paid):
1. verify_signature() on the raw body (routes reject with 401 first)
2. parse_gateway_event() probes the known payload shapes into a GatewayEvent
3. reconcile() resolves the Payment, then in ONE transaction:
   - claims the purchase pending -> processing (guarded UPDATE)
   - marks the Payment paid (no-op if already paid)
   - only if the claim won: decrements stock or issues tickets
   Any business-rule failure rolls all of it back.
4. After commit, each isolated: clear cart, confirmation email, notification

IDEMPOTENCY:
- a purchase already past pending is never claimed again, so stock is
  decremented at most once
- ticket issuance returns existing tickets for the purchase
- re-marking a paid Payment is a no-op
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app

from ..extensions import db
from ..models import Payment, Purchase, User
from ..models.orders import (
    PAYMENT_CANCELLED,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PURCHASE_CANCELLED,
    PURCHASE_PENDING,
    PURCHASE_PROCESSING,
    PURCHASE_TYPE_PRODUCT,
)
from storefront.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .payment_service import resolve_payment
from .purchase_service import transition
from .stock_service import decrement_stock
from .suspension_service import enforce_suspension_policy
from .ticket_service import TicketError, issue_tickets
from . import cart_service, mail_service, notification_service


class WebhookPayloadError(Exception):
    """Payload is not a recognizable gateway event (400)."""
    pass


class ReconciliationError(Exception):
    """Business rule violated while applying a payment (409). Transaction rolled back."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# =============================================================================
# EVENT KINDS
# =============================================================================

KIND_PAID = "paid"
KIND_FAILED = "failed"
KIND_CANCELLED = "cancelled"
KIND_CHARGEABLE = "chargeable"
KIND_IGNORED = "ignored"

EVENT_KINDS = {
    "payment.paid": KIND_PAID,
    "checkout_session.payment.paid": KIND_PAID,
    "payment.failed": KIND_FAILED,
    "payment.cancelled": KIND_CANCELLED,
    "source.chargeable": KIND_CHARGEABLE,
}

OUTCOME_PROCESSED = "processed"
OUTCOME_ALREADY_PROCESSED = "already_processed"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_IGNORED = "ignored"


# =============================================================================
# SIGNATURE
# =============================================================================

def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _parse_signature_header(header: str) -> dict[str, str]:
    parts = {}
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def verify_signature(
    raw_body: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int = 0,
    now: float | None = None,
) -> bool:
    """
    Verify a Paymongo-Signature header.

    Accepted forms:
    - "t=<unix>,te=<hex>,li=<hex>": HMAC-SHA256 over "<t>.<raw body>",
      matching either the test (te) or live (li) signature
    - "<hex>": HMAC-SHA256 over the raw body

    With tolerance_seconds > 0 the timestamp must be within that many
    seconds of now. All comparisons are constant-time.
    """
    if not header or not secret:
        return False

    parts = _parse_signature_header(header)
    if "t" in parts:
        timestamp = parts["t"]
        expected = _hmac_hex(secret, timestamp.encode("utf-8") + b"." + raw_body)
        candidates = [parts.get("te"), parts.get("li")]
        matched = False
        for candidate in candidates:
            if candidate and hmac.compare_digest(expected, candidate.lower()):
                matched = True
        if not matched:
            return False
        if tolerance_seconds and tolerance_seconds > 0:
            try:
                ts = int(timestamp)
            except ValueError:
                return False
            current = time.time() if now is None else now
            if abs(current - ts) > tolerance_seconds:
                return False
        return True

    expected = _hmac_hex(secret, raw_body)
    return hmac.compare_digest(expected, header.strip().lower())


def sign_payload(raw_body: bytes, secret: str, timestamp: int | None = None, live: bool = False) -> str:
    """Build a Paymongo-Signature header value for raw_body (used by tooling and tests)."""
    ts = str(int(time.time()) if timestamp is None else timestamp)
    sig = _hmac_hex(secret, ts.encode("utf-8") + b"." + raw_body)
    return f"t={ts},te=,li={sig}" if live else f"t={ts},te={sig},li="


# =============================================================================
# EVENT PARSING
# =============================================================================

@dataclass(frozen=True)
class GatewayEvent:
    event_type: str
    kind: str
    event_id: str | None = None
    payment_intent_id: str | None = None
    transaction_id: str | None = None
    metadata: dict = field(default_factory=dict)
    amount_cents: int | None = None
    currency: str | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    raw: dict = field(default_factory=dict, repr=False)


def _dig(obj: Any, *path):
    for key in path:
        if isinstance(key, int):
            if not isinstance(obj, list) or len(obj) <= key:
                return None
        elif not isinstance(obj, dict):
            return None
        obj = obj[key] if isinstance(key, int) else obj.get(key)
        if obj is None:
            return None
    return obj


def _resource(payload: dict) -> dict:
    """The payment / checkout-session object the event is about."""
    nested = _dig(payload, "data", "attributes", "data")
    if isinstance(nested, dict):
        return nested
    data = payload.get("data")
    return data if isinstance(data, dict) else {}


def _first(payload: dict, extractors: list[Callable[[dict], Any]], accept: Callable[[Any], bool] | None = None):
    for extractor in extractors:
        value = extractor(payload)
        if value in (None, "", {}):
            continue
        if accept is not None and not accept(value):
            continue
        return value
    return None


EVENT_TYPE_EXTRACTORS = [
    lambda p: _dig(p, "data", "attributes", "type"),
    lambda p: _dig(p, "data", "type"),
    lambda p: p.get("type"),
]

EVENT_ID_EXTRACTORS = [
    lambda p: _dig(p, "data", "id"),
    lambda p: p.get("id"),
]

INTENT_ID_EXTRACTORS = [
    lambda p: _dig(_resource(p), "attributes", "payment_intent_id"),
    lambda p: _dig(_resource(p), "attributes", "payment_intent", "id"),
    lambda p: _dig(_resource(p), "attributes", "payment_intent"),
    lambda p: _dig(_resource(p), "attributes", "payments", 0, "attributes", "payment_intent_id"),
    lambda p: _dig(p, "data", "attributes", "payment_intent_id"),
]

TRANSACTION_ID_EXTRACTORS = [
    lambda p: _resource(p).get("id"),
    lambda p: _dig(_resource(p), "attributes", "payments", 0, "id"),
]

METADATA_EXTRACTORS = [
    lambda p: _dig(_resource(p), "attributes", "metadata"),
    lambda p: _dig(_resource(p), "attributes", "payment_intent", "attributes", "metadata"),
    lambda p: _dig(_resource(p), "attributes", "payments", 0, "attributes", "metadata"),
    lambda p: _dig(p, "data", "attributes", "metadata"),
]

AMOUNT_EXTRACTORS = [
    lambda p: _dig(_resource(p), "attributes", "amount"),
    lambda p: _dig(_resource(p), "attributes", "line_items", 0, "amount"),
    lambda p: _dig(p, "data", "attributes", "amount"),
]

CURRENCY_EXTRACTORS = [
    lambda p: _dig(_resource(p), "attributes", "currency"),
    lambda p: _dig(p, "data", "attributes", "currency"),
]

FAILURE_CODE_EXTRACTORS = [
    lambda p: _dig(_resource(p), "attributes", "failed_code"),
    lambda p: _dig(_resource(p), "attributes", "failure_code"),
    lambda p: _dig(_resource(p), "attributes", "last_payment_error", "code"),
]

FAILURE_MESSAGE_EXTRACTORS = [
    lambda p: _dig(_resource(p), "attributes", "failed_message"),
    lambda p: _dig(_resource(p), "attributes", "failure_message"),
    lambda p: _dig(_resource(p), "attributes", "last_payment_error", "message"),
]


def _is_str(value) -> bool:
    return isinstance(value, str)


def parse_gateway_event(payload) -> GatewayEvent:
    """
    Normalize a webhook payload into a GatewayEvent.

    Raises:
        WebhookPayloadError: payload is not an object or carries no event type
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook payload must be a JSON object")

    # data.type is the literal "event" on the envelope; skip it in favor of deeper paths
    event_type = _first(payload, EVENT_TYPE_EXTRACTORS, accept=lambda v: _is_str(v) and v != "event")
    if not event_type:
        raise WebhookPayloadError("Webhook payload has no event type")

    amount = _first(payload, AMOUNT_EXTRACTORS, accept=lambda v: isinstance(v, int) and not isinstance(v, bool))
    metadata = _first(payload, METADATA_EXTRACTORS, accept=lambda v: isinstance(v, dict))

    return GatewayEvent(
        event_type=event_type,
        kind=EVENT_KINDS.get(event_type, KIND_IGNORED),
        event_id=_first(payload, EVENT_ID_EXTRACTORS, accept=_is_str),
        payment_intent_id=_first(payload, INTENT_ID_EXTRACTORS, accept=_is_str),
        transaction_id=_first(payload, TRANSACTION_ID_EXTRACTORS, accept=_is_str),
        metadata=dict(metadata or {}),
        amount_cents=amount,
        currency=_first(payload, CURRENCY_EXTRACTORS, accept=_is_str),
        failure_code=_first(payload, FAILURE_CODE_EXTRACTORS, accept=_is_str),
        failure_message=_first(payload, FAILURE_MESSAGE_EXTRACTORS, accept=_is_str),
        raw=payload,
    )


# =============================================================================
# RECONCILIATION
# =============================================================================

@dataclass
class ReconcileResult:
    outcome: str
    message: str
    payment_id: int | None = None
    purchase_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "message": self.message,
            "payment_id": self.payment_id,
            "purchase_id": self.purchase_id,
        }


def reconcile(event: GatewayEvent, config) -> ReconcileResult:
    """
    Apply a parsed gateway event.

    Raises:
        ReconciliationError: stock or seats ran out before payment landed
    """
    current_app.logger.info(
        "PayMongo webhook %s (%s): intent=%s transaction=%s purchase_id=%s",
        event.event_type,
        event.event_id,
        event.payment_intent_id,
        event.transaction_id,
        event.metadata.get("purchase_id"),
    )

    if event.kind == KIND_PAID:
        return _handle_paid(event, config)
    if event.kind in (KIND_FAILED, KIND_CANCELLED):
        return _handle_failed(event, config)
    if event.kind == KIND_CHARGEABLE:
        return _handle_chargeable(event)
    return ReconcileResult(OUTCOME_IGNORED, "Event type not handled")


def _not_found(event: GatewayEvent) -> ReconcileResult:
    current_app.logger.warning(
        "PayMongo webhook %s: no payment matches intent=%s purchase_id=%s transaction=%s",
        event.event_type,
        event.payment_intent_id,
        event.metadata.get("purchase_id"),
        event.transaction_id,
    )
    return ReconcileResult(OUTCOME_NOT_FOUND, "Payment not found")


def _mark_payment_paid(payment: Payment, event: GatewayEvent) -> bool:
    if payment.status == PAYMENT_PAID:
        return False
    now = utcnow()
    payment.status = PAYMENT_PAID
    payment.payment_date = now
    payment.updated_at = now
    payment.failure_code = None
    payment.failure_message = None
    if event.transaction_id:
        payment.transaction_id = event.transaction_id
    if event.payment_intent_id and not payment.payment_intent_id:
        payment.payment_intent_id = event.payment_intent_id
    if event.amount_cents is not None and event.amount_cents != payment.amount_cents:
        current_app.logger.warning(
            "Payment %s amount mismatch: expected %s, gateway reported %s",
            payment.id, payment.amount_cents, event.amount_cents,
        )
    payment.gateway_metadata = {**(payment.gateway_metadata or {}), "webhook": event.raw}
    return True


def _handle_paid(event: GatewayEvent, config) -> ReconcileResult:
    def _op():
        payment = resolve_payment(event.payment_intent_id, event.metadata, event.transaction_id, lock=True)
        if payment is None:
            return None

        purchase = lock_for_update(db.session.query(Purchase).filter_by(id=payment.purchase_id)).one()
        claimed = transition(purchase, PURCHASE_PENDING, PURCHASE_PROCESSING)
        _mark_payment_paid(payment, event)

        tickets = []
        if claimed:
            if purchase.type == PURCHASE_TYPE_PRODUCT:
                for item in purchase.items:
                    if item.variant_id is None:
                        continue
                    if not decrement_stock(item.variant_id, item.quantity):
                        raise ReconciliationError(
                            f"Insufficient stock for {item.description or 'variant ' + str(item.variant_id)}",
                            details={"purchase_id": purchase.id, "variant_id": item.variant_id, "quantity": item.quantity},
                        )
            else:
                try:
                    tickets, _ = issue_tickets(purchase, config)
                except TicketError as exc:
                    raise ReconciliationError(str(exc), details={"purchase_id": purchase.id, "event_id": purchase.event_id})

        db.session.commit()
        return payment, purchase, claimed, tickets

    found = run_with_retry(_op)
    if found is None:
        return _not_found(event)

    payment, purchase, claimed, tickets = found
    if not claimed:
        if purchase.status == PURCHASE_CANCELLED:
            current_app.logger.warning(
                "Payment %s paid for cancelled purchase %s; needs manual refund", payment.id, purchase.id
            )
        return ReconcileResult(OUTCOME_ALREADY_PROCESSED, "Payment already processed", payment.id, purchase.id)

    current_app.logger.info("Purchase %s confirmed by payment %s", purchase.id, payment.id)
    _after_paid(purchase, tickets)
    return ReconcileResult(OUTCOME_PROCESSED, "Payment processed successfully", payment.id, purchase.id)


def _after_paid(purchase: Purchase, tickets: list) -> None:
    """Best-effort tail; each step isolated so one failure cannot skip the others."""
    try:
        cart_service.clear_cart(purchase.user_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to clear cart for user %s", purchase.user_id)

    user = db.session.get(User, purchase.user_id)
    if user is not None:
        if purchase.type == PURCHASE_TYPE_PRODUCT:
            mail_service.send_order_confirmation(user, purchase)
        else:
            mail_service.send_ticket_confirmation(user, purchase, tickets)

    try:
        notification_service.notify_payment(purchase, succeeded=True)
        if tickets:
            notification_service.notify_tickets_issued(purchase, tickets)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create payment notification for purchase %s", purchase.id)


def _handle_failed(event: GatewayEvent, config) -> ReconcileResult:
    new_payment_status = PAYMENT_CANCELLED if event.kind == KIND_CANCELLED else PAYMENT_FAILED

    def _op():
        payment = resolve_payment(event.payment_intent_id, event.metadata, event.transaction_id, lock=True)
        if payment is None:
            return None

        purchase = lock_for_update(db.session.query(Purchase).filter_by(id=payment.purchase_id)).one()
        if payment.status == PAYMENT_PAID:
            # A late failure for an attempt that already succeeded changes nothing
            return payment, purchase, False

        payment.status = new_payment_status
        payment.updated_at = utcnow()
        if new_payment_status == PAYMENT_FAILED:
            payment.failure_code = event.failure_code
            payment.failure_message = event.failure_message or "Payment failed"
        payment.gateway_metadata = {**(payment.gateway_metadata or {}), "webhook": event.raw}

        moved = transition(purchase, PURCHASE_PENDING, PURCHASE_CANCELLED)
        db.session.commit()
        return payment, purchase, moved

    found = run_with_retry(_op)
    if found is None:
        return _not_found(event)

    payment, purchase, moved = found
    if not moved:
        if purchase.status == PURCHASE_CANCELLED:
            # Redelivery: the check may not have run for the first delivery
            enforce_suspension_policy(purchase.user_id, config)
        return ReconcileResult(OUTCOME_ALREADY_PROCESSED, "Payment failure already processed", payment.id, purchase.id)

    current_app.logger.info(
        "Purchase %s cancelled after payment %s (%s: %s)",
        purchase.id, new_payment_status, payment.failure_code, payment.failure_message,
    )
    enforce_suspension_policy(purchase.user_id, config)

    try:
        notification_service.notify_payment(purchase, succeeded=False, reason=payment.failure_message)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create payment failure notification for purchase %s", purchase.id)
    user = db.session.get(User, purchase.user_id)
    if user is not None:
        mail_service.send_payment_failure(user, purchase, payment.failure_message)

    return ReconcileResult(OUTCOME_PROCESSED, f"Payment {new_payment_status} processed", payment.id, purchase.id)


def _handle_chargeable(event: GatewayEvent) -> ReconcileResult:
    def _op():
        payment = resolve_payment(event.payment_intent_id, event.metadata, event.transaction_id, lock=True)
        if payment is None:
            return None
        changed = payment.status == PAYMENT_PENDING
        if changed:
            payment.status = PAYMENT_PROCESSING
            payment.updated_at = utcnow()
            db.session.commit()
        return payment, changed

    found = run_with_retry(_op)
    if found is None:
        return _not_found(event)
    payment, changed = found
    outcome = OUTCOME_PROCESSED if changed else OUTCOME_ALREADY_PROCESSED
    return ReconcileResult(outcome, "Source chargeable", payment.id, payment.purchase_id)
