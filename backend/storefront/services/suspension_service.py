# Overview: Service-layer operations for the cancellation-based suspension policy.

"""
Suspension Policy

WHY: Users who repeatedly reserve stock or seats and then cancel are
suspended automatically after a threshold of cancellations.

RULES:
- count = cancelled product purchases + cancelled tickets
- admins are never auto-suspended
- at count >= threshold the user is suspended exactly once
- re-evaluated on every cancellation; no time decay

The suspension itself is a guarded UPDATE (is_suspended = 0 -> 1) so two
concurrent cancellations cannot both fire the notification.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import User, Purchase, Ticket
from ..models.orders import PURCHASE_CANCELLED, PURCHASE_TYPE_PRODUCT
from ..models.events import TICKET_STATUS_CANCELLED
from storefront.time_utils import utcnow
from .concurrency import conditional_update
from . import notification_service


class SuspensionError(Exception):
    """Raised for suspension operation errors."""
    pass


def suspension_reason(count: int) -> str:
    return f"Automatic suspension due to {count} purchase cancellations. Please contact support."


def get_cancellation_count(user_id: int) -> int:
    purchases = (
        db.session.query(db.func.count(Purchase.id))
        .filter(
            Purchase.user_id == user_id,
            Purchase.type == PURCHASE_TYPE_PRODUCT,
            Purchase.status == PURCHASE_CANCELLED,
        )
        .scalar()
    ) or 0
    tickets = (
        db.session.query(db.func.count(Ticket.id))
        .filter(Ticket.user_id == user_id, Ticket.status == TICKET_STATUS_CANCELLED)
        .scalar()
    ) or 0
    return purchases + tickets


def check_and_suspend_if_needed(user_id: int, config) -> bool:
    """
    Suspend the user if their cancellation count reached the threshold.

    Commits. Returns True only for the call that actually suspended the user.
    """
    user = db.session.get(User, user_id)
    if user is None or user.is_admin:
        return False

    # Read the flag from the DB; the ORM copy may predate another request's update
    already = db.session.query(User.is_suspended).filter(User.id == user_id).scalar()
    if already:
        return False

    count = get_cancellation_count(user_id)
    if count < config.suspension_threshold:
        return False

    reason = suspension_reason(count)
    stmt = (
        update(User)
        .where(User.id == user_id, User.is_suspended.is_(False))
        .values(is_suspended=True, suspended_at=utcnow(), suspension_reason=reason)
    )
    won = conditional_update(stmt) == 1
    db.session.commit()
    if not won:
        return False

    db.session.refresh(user)
    current_app.logger.warning("User %s auto-suspended after %s cancellations", user_id, count)
    try:
        notification_service.notify_suspension(user_id, reason, is_suspended=True)
    except Exception:
        current_app.logger.exception("Failed to create suspension notification for user %s", user_id)
    return True


def enforce_suspension_policy(user_id: int, config) -> bool:
    """
    Run check_and_suspend_if_needed as a best-effort tail step.

    Used after a cancellation has already been committed: a failure here is
    logged and rolled back so it cannot undo or fail the cancellation. The
    check is idempotent and can simply run again on the next cancellation or
    webhook redelivery.
    """
    try:
        return check_and_suspend_if_needed(user_id, config)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Suspension check failed for user %s", user_id)
        return False

def unsuspend_user(user_id: int) -> User:
    """Admin action: lift a suspension and notify the user."""
    user = db.session.get(User, user_id)
    if user is None:
        raise SuspensionError(f"User {user_id} not found")
    if not user.is_suspended:
        raise SuspensionError("User is not suspended")

    user.is_suspended = False
    user.suspended_at = None
    user.suspension_reason = None
    db.session.commit()

    try:
        notification_service.notify_suspension(user_id, None, is_suspended=False)
    except Exception:
        current_app.logger.exception("Failed to create unsuspension notification for user %s", user_id)
    return user
