# Overview: Service-layer operations for events and tickets; booking, issuance, scanning, cancellation.

"""
Event Ticketing Service

WHY: Seats are a contended resource like stock. A paid ticket purchase only
turns into Ticket rows after the gateway confirms payment, and issuance
must be safe under duplicate webhook deliveries and concurrent buyers.

DESIGN:
- issue_tickets() is idempotent per purchase: existing tickets are returned
- capacity is re-checked after taking a write lock on the event row
- QR payloads are HMAC-signed so the door scanner can reject forgeries
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Event, Ticket, Purchase, PurchaseItem, Payment, User
from ..models.events import (
    SEAT_HOLDING_STATUSES,
    TICKET_STATUS_CANCELLED,
    TICKET_STATUS_CONFIRMED,
    TICKET_STATUS_PENDING,
    TICKET_STATUS_USED,
)
from ..models.orders import (
    PAYMENT_PENDING,
    PURCHASE_COMPLETED,
    PURCHASE_PENDING,
    PURCHASE_TYPE_TICKET,
)
from storefront.time_utils import utcnow, parse_iso_datetime
from .concurrency import conditional_update, lock_for_update, run_with_retry
from .suspension_service import enforce_suspension_policy


class TicketError(Exception):
    """Raised for ticket operation errors."""
    pass


class TicketNotFoundError(TicketError):
    """Ticket or event does not exist (or is not visible to the caller)."""
    pass


class TicketForbiddenError(TicketError):
    """Caller may not perform this ticket operation."""
    pass


class TicketCapacityError(TicketError):
    """Event does not have enough remaining seats."""
    pass


TICKET_NUMBER_PREFIX = "TKT-"

ADMIN_TICKET_TRANSITIONS = {
    TICKET_STATUS_PENDING: {TICKET_STATUS_CONFIRMED, TICKET_STATUS_CANCELLED},
    TICKET_STATUS_CONFIRMED: {TICKET_STATUS_USED, TICKET_STATUS_CANCELLED},
}


# =============================================================================
# TICKET NUMBERS / QR PAYLOADS
# =============================================================================

def generate_ticket_number() -> str:
    """Unique-enough ticket number, e.g. TKT-3F9A0C12BE."""
    return TICKET_NUMBER_PREFIX + secrets.token_hex(5).upper()


def _qr_signature(body: str, key: str) -> str:
    return hmac.new(key.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()[:16]


def sign_qr_payload(ticket_number: str, event_id: int, user_id: int, key: str) -> str:
    body = f"{ticket_number}:{event_id}:{user_id}"
    return f"{body}:{_qr_signature(body, key)}"


def verify_qr_payload(payload: str, key: str) -> str | None:
    """
    Check a scanned QR payload.

    Returns:
        The ticket number when the signature matches, else None
    """
    parts = (payload or "").strip().split(":")
    if len(parts) != 4:
        return None
    body = ":".join(parts[:3])
    if not hmac.compare_digest(_qr_signature(body, key), parts[3]):
        return None
    return parts[0]


# =============================================================================
# CAPACITY
# =============================================================================

def lock_event(event_id: int) -> Event:
    """
    Take a write lock on the event row and return it fresh.

    The no-op version bump makes SQLite (which ignores FOR UPDATE) hold its
    write lock until commit, so concurrent issuers count tickets one at a time.
    """
    bumped = conditional_update(
        update(Event).where(Event.id == event_id).values(capacity_version=Event.capacity_version + 1)
    )
    if bumped != 1:
        raise TicketNotFoundError(f"Event {event_id} not found")
    return lock_for_update(db.session.query(Event).filter_by(id=event_id)).populate_existing().one()


def ensure_capacity(event: Event, quantity: int) -> None:
    if not event.sells_tickets:
        raise TicketError("This event does not have ticket sales enabled")
    held = event.held_ticket_count()
    if held + quantity > event.max_tickets:
        raise TicketCapacityError(
            f"Not enough tickets available for event {event.id} "
            f"(requested {quantity}, remaining {max(0, event.max_tickets - held)})"
        )


def user_held_ticket_count(user_id: int, event_id: int) -> int:
    return (
        db.session.query(db.func.count(Ticket.id))
        .filter(
            Ticket.user_id == user_id,
            Ticket.event_id == event_id,
            Ticket.status.in_(SEAT_HOLDING_STATUSES),
        )
        .scalar()
    ) or 0


# =============================================================================
# ISSUANCE
# =============================================================================

def tickets_for_purchase(purchase_id: int) -> list[Ticket]:
    return db.session.query(Ticket).filter_by(purchase_id=purchase_id).order_by(Ticket.id).all()


def issue_tickets(purchase: Purchase, config, status: str = TICKET_STATUS_CONFIRMED) -> tuple[list[Ticket], bool]:
    """
    Create one Ticket per purchased unit. Does NOT commit.

    Returns:
        (tickets, created) where created is False when tickets already
        existed for this purchase (duplicate delivery)

    Raises:
        TicketCapacityError: the event filled up since the purchase was made
    """
    existing = tickets_for_purchase(purchase.id)
    if existing:
        return existing, False

    if purchase.event_id is None:
        raise TicketError(f"Purchase {purchase.id} is not linked to an event")

    quantity = sum(item.quantity for item in purchase.items)
    if quantity < 1:
        raise TicketError(f"Purchase {purchase.id} has no ticket quantity")
    unit_price = purchase.items[0].unit_price_cents if purchase.items else 0

    event = lock_event(purchase.event_id)
    ensure_capacity(event, quantity)

    tickets = []
    for _ in range(quantity):
        number = generate_ticket_number()
        ticket = Ticket(
            ticket_number=number,
            event_id=event.id,
            user_id=purchase.user_id,
            purchase_id=purchase.id,
            status=status,
            price_cents=unit_price,
            qr_payload=sign_qr_payload(number, event.id, purchase.user_id, config.signing_key),
            created_at=utcnow(),
        )
        db.session.add(ticket)
        tickets.append(ticket)
    db.session.flush()
    return tickets, True


# =============================================================================
# BOOKING
# =============================================================================

def create_ticket_purchase(user_id: int, event_id: int, quantity: int, config) -> dict:
    """
    Book tickets for an event.

    Paid events: creates a pending ticket Purchase and a pending Payment;
    tickets are issued by the webhook reconciler after payment.
    Free events: tickets are issued now and the purchase is completed.

    Returns:
        {"purchase": Purchase, "payment": Payment | None, "tickets": [Ticket]}
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise TicketError("quantity must be a positive integer")
    if quantity > config.max_tickets_per_user:
        raise TicketError(f"You can only book a maximum of {config.max_tickets_per_user} tickets per event")

    def _op():
        user = db.session.get(User, user_id)
        if user is None:
            raise TicketNotFoundError(f"User {user_id} not found")
        if user.is_admin:
            raise TicketForbiddenError("Admins cannot book tickets")
        if user.is_suspended:
            raise TicketForbiddenError("Your account is suspended. Please contact support.")

        event = db.session.get(Event, event_id)
        if event is None or not event.is_active:
            raise TicketNotFoundError(f"Event {event_id} not found")
        if not event.sells_tickets:
            raise TicketError("This event does not have ticket sales enabled")

        if user_held_ticket_count(user_id, event_id) + quantity > config.max_tickets_per_user:
            raise TicketError(f"You can only book a maximum of {config.max_tickets_per_user} tickets per event")

        event = lock_event(event_id)
        ensure_capacity(event, quantity)

        total = event.ticket_price_cents * quantity
        purchase = Purchase(
            user_id=user_id,
            event_id=event_id,
            type=PURCHASE_TYPE_TICKET,
            status=PURCHASE_PENDING,
            subtotal_cents=total,
            tax_cents=0,
            shipping_cents=0,
            total_cents=total,
            created_at=utcnow(),
        )
        db.session.add(purchase)
        db.session.flush()

        db.session.add(PurchaseItem(
            purchase_id=purchase.id,
            description=f"Ticket: {event.title}",
            quantity=quantity,
            unit_price_cents=event.ticket_price_cents,
            line_total_cents=total,
        ))
        db.session.flush()

        payment = None
        tickets = []
        if total == 0:
            tickets, _ = issue_tickets(purchase, config)
            purchase.status = PURCHASE_COMPLETED
            purchase.completed_at = utcnow()
        else:
            payment = Payment(
                purchase_id=purchase.id,
                amount_cents=total,
                currency=config.currency,
                status=PAYMENT_PENDING,
                payment_method="paymongo",
                created_at=utcnow(),
            )
            db.session.add(payment)

        db.session.commit()
        return {"purchase": purchase, "payment": payment, "tickets": tickets}

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION / ADMIN
# =============================================================================

def cancel_ticket(ticket_id: int, user_id: int, config) -> Ticket:
    """Owner cancels a single pending/confirmed ticket; feeds the suspension policy."""
    def _op():
        ticket = lock_for_update(db.session.query(Ticket).filter_by(id=ticket_id)).first()
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        if ticket.user_id != user_id:
            raise TicketForbiddenError("You can only cancel your own tickets")
        if ticket.status not in SEAT_HOLDING_STATUSES:
            raise TicketError(f"Cannot cancel a ticket with status {ticket.status}")

        ticket.status = TICKET_STATUS_CANCELLED
        ticket.cancelled_at = utcnow()
        db.session.commit()
        return ticket

    ticket = run_with_retry(_op)
    enforce_suspension_policy(user_id, config)
    return ticket


def update_ticket_status(ticket_id: int, new_status: str) -> Ticket:
    """Admin status change, limited to ADMIN_TICKET_TRANSITIONS."""
    def _op():
        ticket = lock_for_update(db.session.query(Ticket).filter_by(id=ticket_id)).first()
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        allowed = ADMIN_TICKET_TRANSITIONS.get(ticket.status, set())
        if new_status not in allowed:
            raise TicketError(f"Cannot change ticket from {ticket.status} to {new_status}")

        ticket.status = new_status
        now = utcnow()
        if new_status == TICKET_STATUS_USED:
            ticket.used_at = now
        elif new_status == TICKET_STATUS_CANCELLED:
            ticket.cancelled_at = now
        db.session.commit()
        return ticket

    return run_with_retry(_op)


def scan_ticket(qr_payload: str, config) -> Ticket:
    """
    Door scan: verify the QR signature and mark a confirmed ticket used.

    Raises:
        TicketForbiddenError: signature does not verify
        TicketError: ticket is not in a scannable state
    """
    ticket_number = verify_qr_payload(qr_payload, config.signing_key)
    if ticket_number is None:
        current_app.logger.warning("Rejected ticket scan with invalid QR signature")
        raise TicketForbiddenError("Invalid ticket QR code")

    ticket = db.session.query(Ticket).filter_by(ticket_number=ticket_number).first()
    if ticket is None or ticket.qr_payload != qr_payload.strip():
        raise TicketNotFoundError("Ticket not found")
    if ticket.status != TICKET_STATUS_CONFIRMED:
        raise TicketError(f"Ticket is {ticket.status}")
    return update_ticket_status(ticket.id, TICKET_STATUS_USED)


def list_user_tickets(user_id: int) -> list[Ticket]:
    return db.session.query(Ticket).filter_by(user_id=user_id).order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()


def create_event(data: dict) -> Event:
    """Admin event creation."""
    title = (data.get("title") or "").strip()
    if not title:
        raise TicketError("title is required")
    price = data.get("ticket_price_cents", 0)
    max_tickets = data.get("max_tickets")
    if isinstance(price, bool) or not isinstance(price, int) or price < 0:
        raise TicketError("ticket_price_cents must be a non-negative integer")
    if max_tickets is not None and (isinstance(max_tickets, bool) or not isinstance(max_tickets, int) or max_tickets < 0):
        raise TicketError("max_tickets must be a non-negative integer")

    try:
        starts_at = parse_iso_datetime(data.get("starts_at"))
    except ValueError:
        raise TicketError("starts_at must be an ISO-8601 datetime")

    event = Event(
        title=title,
        description=data.get("description"),
        venue=data.get("venue"),
        starts_at=starts_at,
        ticket_price_cents=price,
        max_tickets=max_tickets,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(event)
    db.session.commit()
    return event
