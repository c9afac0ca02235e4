# Overview: Flask API routes for events and ticket booking.

# backend/storefront/routes/events.py
"""
Event & Ticket API Routes

- Public event listing
- Ticket booking (free events complete immediately, paid ones go to checkout)
- Buyer's own tickets and ticket cancellation
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..config import get_commerce_config
from ..extensions import db
from ..models import Event
from ..services import ticket_service
from ..services.ticket_service import (
    TicketCapacityError,
    TicketError,
    TicketForbiddenError,
    TicketNotFoundError,
)
from ..decorators import require_auth


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


def ticket_error_response(e: TicketError):
    if isinstance(e, TicketNotFoundError):
        status = 404
    elif isinstance(e, TicketForbiddenError):
        status = 403
    elif isinstance(e, TicketCapacityError):
        status = 409
    else:
        status = 400
    return jsonify({"error": str(e)}), status


@events_bp.get("/")
def list_events_route():
    events = db.session.query(Event).filter_by(is_active=True).order_by(Event.starts_at, Event.id).all()
    return jsonify({"events": [e.to_dict() for e in events]}), 200


@events_bp.get("/<int:event_id>")
def get_event_route(event_id: int):
    event = db.session.get(Event, event_id)
    if event is None or not event.is_active:
        return jsonify({"error": "Event not found"}), 404
    return jsonify({"event": event.to_dict()}), 200


@events_bp.post("/<int:event_id>/tickets")
@require_auth
def book_tickets_route(event_id: int):
    """
    Book tickets for an event.

    Request body: {"quantity": 2}

    Returns:
        201: {"purchase": {...}, "payment": {...} | null, "tickets": [...]}
        400: invalid quantity / per-user limit / ticket sales disabled
        403: admin or suspended account
        404: event not found
        409: not enough seats left
    """
    try:
        data = request.get_json(silent=True) or {}
        result = ticket_service.create_ticket_purchase(
            g.current_user.id,
            event_id,
            data.get("quantity", 1),
            get_commerce_config(),
        )
        return jsonify({
            "purchase": result["purchase"].to_dict(),
            "payment": result["payment"].to_dict() if result["payment"] else None,
            "tickets": [t.to_dict() for t in result["tickets"]],
        }), 201

    except TicketError as e:
        return ticket_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to book tickets for event %s", event_id)
        return jsonify({"error": "Internal server error"}), 500


@events_bp.get("/tickets/mine")
@require_auth
def my_tickets_route():
    tickets = ticket_service.list_user_tickets(g.current_user.id)
    return jsonify({"tickets": [t.to_dict() for t in tickets]}), 200


@events_bp.put("/tickets/<int:ticket_id>/cancel")
@require_auth
def cancel_ticket_route(ticket_id: int):
    try:
        ticket = ticket_service.cancel_ticket(ticket_id, g.current_user.id, get_commerce_config())
        return jsonify({"ticket": ticket.to_dict()}), 200
    except TicketError as e:
        return ticket_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel ticket %s", ticket_id)
        return jsonify({"error": "Internal server error"}), 500
