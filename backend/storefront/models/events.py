from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z, format_cents


TICKET_STATUS_PENDING = "pending"
TICKET_STATUS_CONFIRMED = "confirmed"
TICKET_STATUS_CANCELLED = "cancelled"
TICKET_STATUS_USED = "used"

# Tickets counted against Event.max_tickets; these can still be cancelled
SEAT_HOLDING_STATUSES = (TICKET_STATUS_PENDING, TICKET_STATUS_CONFIRMED)


class Event(db.Model):
    """
    Ticketed event with a fixed seat capacity.

    INVARIANT: count(tickets in SEAT_HOLDING_STATUSES, i.e. pending and
    confirmed) <= max_tickets. Used tickets no longer hold a seat.
    `capacity_version` is bumped with a plain UPDATE before tickets are
    counted; the write lock it takes serialises concurrent issuers on
    backends without SELECT ... FOR UPDATE.
    """
    __tablename__ = "events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    venue = db.Column(db.String(255), nullable=True)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)

    ticket_price_cents = db.Column(db.Integer, nullable=False, default=0)
    # NULL means the event does not sell tickets
    max_tickets = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    capacity_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def sells_tickets(self) -> bool:
        return self.max_tickets is not None and self.max_tickets > 0

    def held_ticket_count(self) -> int:
        return (
            db.session.query(db.func.count(Ticket.id))
            .filter(Ticket.event_id == self.id, Ticket.status.in_(SEAT_HOLDING_STATUSES))
            .scalar()
        ) or 0

    @property
    def remaining_tickets(self) -> int:
        if not self.sells_tickets:
            return 0
        return max(0, self.max_tickets - self.held_ticket_count())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "venue": self.venue,
            "starts_at": to_utc_z(self.starts_at) if self.starts_at else None,
            "ticket_price_cents": self.ticket_price_cents,
            "ticket_price": format_cents(self.ticket_price_cents),
            "max_tickets": self.max_tickets,
            "remaining_tickets": self.remaining_tickets,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Ticket(db.Model):
    """Single admission to an Event, optionally tied to the Purchase that paid for it."""
    __tablename__ = "tickets"
    __table_args__ = (
        db.UniqueConstraint("ticket_number", name="uq_tickets_ticket_number"),
        db.Index("ix_tickets_event_status", "event_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(32), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=TICKET_STATUS_PENDING, index=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    qr_payload = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    event = db.relationship("Event", backref=db.backref("tickets", lazy=True))
    user = db.relationship("User", backref=db.backref("tickets", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "purchase_id": self.purchase_id,
            "status": self.status,
            "price_cents": self.price_cents,
            "price": format_cents(self.price_cents),
            "qr_payload": self.qr_payload,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "used_at": to_utc_z(self.used_at) if self.used_at else None,
        }
