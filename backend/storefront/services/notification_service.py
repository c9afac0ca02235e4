# Overview: Service-layer operations for in-app notifications and the live relay push.

"""
Notification Fan-out

WHY: Business events (payment received, order shipped, account suspended)
leave a persistent inbox row for the user and are pushed to the realtime
relay so connected browsers update immediately.

DESIGN:
- The inbox row is the source of truth and is committed first
- The relay push runs on a small background executor with its own short
  timeout; the returned Future is the error channel
- A relay that is down or slow never fails or delays the request
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

import httpx
from flask import current_app, has_app_context

from ..extensions import db
from ..models import Notification, User
from storefront.time_utils import utcnow


logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised for notification operation errors."""
    pass


# =============================================================================
# NOTIFICATION TYPES (CONSTANTS)
# =============================================================================

TYPE_ORDER = "order"
TYPE_PAYMENT = "payment"
TYPE_EVENT = "event"
TYPE_SYSTEM = "system"

VALID_TYPES = (TYPE_ORDER, TYPE_PAYMENT, TYPE_EVENT, TYPE_SYSTEM)


# =============================================================================
# RELAY
# =============================================================================

class NotificationRelay:
    """
    Fire-and-forget pusher to the websocket relay.

    push() returns a Future resolving to the relay's HTTP status code, or
    None when no relay is configured. Failures are logged at debug level and
    kept on the Future; they are never raised to the caller.
    """

    def __init__(self, base_url: str, timeout: float = 2.0, max_workers: int = 2, transport=None):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify-relay") if self.base_url else None

    @property
    def enabled(self) -> bool:
        return self._executor is not None

    def push(self, user_id: int, payload: dict) -> Future | None:
        if not self.enabled:
            return None
        return self._executor.submit(self._send, user_id, payload)

    def _send(self, user_id: int, payload: dict) -> int:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    f"{self.base_url}/notify",
                    json={"user_id": user_id, "notification": payload},
                )
            response.raise_for_status()
            return response.status_code
        except httpx.HTTPError as exc:
            logger.debug("Notification relay push failed for user %s: %s", user_id, exc)
            raise

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


def get_notification_relay() -> NotificationRelay | None:
    if not has_app_context():
        return None
    return current_app.extensions.get("notification_relay")


# =============================================================================
# INBOX WRITES
# =============================================================================

def create_notification(
    user_id: int,
    title: str,
    message: str,
    type: str = TYPE_SYSTEM,
    action_url: str | None = None,
    action_text: str | None = None,
    metadata: dict | None = None,
    relay: NotificationRelay | None = None,
) -> Notification:
    """
    Persist a notification and push it to the relay.

    The row is committed before the push so a relay subscriber that
    re-fetches the inbox always sees it.
    """
    if type not in VALID_TYPES:
        raise NotificationError(f"Invalid notification type: {type}")

    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        action_url=action_url,
        action_text=action_text,
        data=metadata,
        created_at=utcnow(),
    )
    db.session.add(notification)
    db.session.commit()

    relay = relay or get_notification_relay()
    if relay is not None:
        relay.push(user_id, notification.to_dict())

    return notification


def notify_order_status(purchase, new_status: str, relay: NotificationRelay | None = None) -> Notification:
    titles = {
        "processing": "Order Confirmed",
        "shipped": "Order Shipped",
        "delivered": "Order Delivered",
        "completed": "Order Completed",
        "cancelled": "Order Cancelled",
        "failed": "Order Failed",
    }
    title = titles.get(new_status, "Order Updated")
    return create_notification(
        purchase.user_id,
        title,
        f"Your order #{purchase.id} is now {new_status}.",
        type=TYPE_ORDER,
        action_url=f"/orders/{purchase.id}",
        action_text="View Order",
        metadata={"purchase_id": purchase.id, "status": new_status},
        relay=relay,
    )


def notify_payment(purchase, succeeded: bool, reason: str | None = None, relay: NotificationRelay | None = None) -> Notification:
    if succeeded:
        title = "Payment Received"
        message = f"We received your payment for order #{purchase.id}."
    else:
        title = "Payment Failed"
        message = f"Payment for order #{purchase.id} did not go through."
        if reason:
            message += f" Reason: {reason}"
    return create_notification(
        purchase.user_id,
        title,
        message,
        type=TYPE_PAYMENT,
        action_url=f"/orders/{purchase.id}",
        action_text="View Order",
        metadata={"purchase_id": purchase.id, "succeeded": succeeded},
        relay=relay,
    )


def notify_tickets_issued(purchase, tickets, relay: NotificationRelay | None = None) -> Notification:
    numbers = [t.ticket_number for t in tickets]
    return create_notification(
        purchase.user_id,
        "Tickets Confirmed",
        f"Your {len(numbers)} ticket(s) are confirmed.",
        type=TYPE_EVENT,
        action_url="/tickets",
        action_text="View Tickets",
        metadata={"purchase_id": purchase.id, "event_id": purchase.event_id, "ticket_numbers": numbers},
        relay=relay,
    )


def notify_suspension(user_id: int, reason: str | None, is_suspended: bool, relay: NotificationRelay | None = None) -> Notification:
    if is_suspended:
        title = "Account Suspended"
        message = (
            f"Your account has been suspended. Reason: {reason}. "
            "Please contact support if you believe this is an error."
        )
    else:
        title = "Account Suspension Lifted"
        message = "Your account suspension has been lifted. You can now proceed with purchases."
    return create_notification(
        user_id,
        title,
        message,
        type=TYPE_SYSTEM,
        action_url="/profile",
        action_text="View Profile",
        relay=relay,
    )


def notify_admins(title: str, message: str, metadata: dict | None = None, relay: NotificationRelay | None = None) -> int:
    """Create the same order notification for every admin. Returns how many were created."""
    admins = db.session.query(User.id).filter(User.role == "admin", User.is_active.is_(True)).all()
    for (admin_id,) in admins:
        create_notification(admin_id, title, message, type=TYPE_ORDER, metadata=metadata, relay=relay)
    return len(admins)


# =============================================================================
# INBOX READS / UPDATES
# =============================================================================

def list_notifications(user_id: int, unread_only: bool = False, limit: int = 50) -> tuple[list[Notification], int]:
    """Return (notifications newest first, unread_count)."""
    query = db.session.query(Notification).filter_by(user_id=user_id)
    if unread_only:
        query = query.filter_by(is_read=False)
    items = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
    unread = db.session.query(Notification).filter_by(user_id=user_id, is_read=False).count()
    return items, unread


def _owned(notification_id: int, user_id: int) -> Notification:
    notification = db.session.query(Notification).filter_by(id=notification_id, user_id=user_id).first()
    if not notification:
        raise NotificationError(f"Notification {notification_id} not found")
    return notification


def mark_read(notification_id: int, user_id: int) -> Notification:
    notification = _owned(notification_id, user_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.session.commit()
    return notification


def mark_all_read(user_id: int) -> int:
    count = (
        db.session.query(Notification)
        .filter_by(user_id=user_id, is_read=False)
        .update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
    )
    db.session.commit()
    return count


def delete_notification(notification_id: int, user_id: int) -> None:
    db.session.delete(_owned(notification_id, user_id))
    db.session.commit()


def delete_all(user_id: int) -> int:
    count = db.session.query(Notification).filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.commit()
    return count
