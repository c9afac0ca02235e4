# Overview: Service-layer operations for transactional email via Flask-Mail.

"""
Transactional Mail

Every sender here is best-effort: a mail transport failure is logged and
reported as False, never raised, so it cannot undo a committed payment or
status change.
"""

from __future__ import annotations

from flask import current_app, render_template
from flask_mail import Message

from ..extensions import mail
from storefront.time_utils import format_cents


def send_mail(subject: str, recipients, template: str, **context) -> bool:
    recips = [recipients] if isinstance(recipients, str) else list(recipients or [])
    if not recips:
        return False
    try:
        msg = Message(
            subject=subject,
            sender=current_app.config.get("MAIL_DEFAULT_SENDER"),
            recipients=recips,
        )
        msg.body = render_template(template, format_cents=format_cents, **context)
        mail.send(msg)
        return True
    except Exception:
        current_app.logger.exception("Failed to send '%s' email to %s", subject, ", ".join(recips))
        return False


def send_order_confirmation(user, purchase) -> bool:
    return send_mail(
        f"Order #{purchase.id} confirmed",
        user.email,
        "emails/order_confirmation.txt",
        user=user,
        purchase=purchase,
    )


def send_ticket_confirmation(user, purchase, tickets) -> bool:
    return send_mail(
        f"Your tickets for {purchase.event.title if purchase.event else 'your event'}",
        user.email,
        "emails/ticket_confirmation.txt",
        user=user,
        purchase=purchase,
        tickets=tickets,
    )


def send_payment_failure(user, purchase, reason: str | None = None) -> bool:
    return send_mail(
        f"Payment for order #{purchase.id} failed",
        user.email,
        "emails/payment_failure.txt",
        user=user,
        purchase=purchase,
        reason=reason,
    )


def send_order_status(user, purchase, new_status: str) -> bool:
    return send_mail(
        f"Order #{purchase.id} is now {new_status}",
        user.email,
        "emails/order_status.txt",
        user=user,
        purchase=purchase,
        status=new_status,
    )
