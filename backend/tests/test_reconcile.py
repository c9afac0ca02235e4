"""
Webhook reconciliation against the service layer.

Covers paid / failed / cancelled / chargeable events, duplicate delivery,
payment lookup order, and the all-or-nothing rollback when stock or seats
ran out before the payment landed.
"""

import pytest

from storefront.extensions import db, mail
from storefront.models import CartItem, Notification, Payment, Purchase, Ticket
from storefront.models.orders import (
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PURCHASE_CANCELLED,
    PURCHASE_PENDING,
    PURCHASE_PROCESSING,
)
from storefront.models.events import TICKET_STATUS_CONFIRMED
from storefront.services import cart_service, purchase_service, stock_service, ticket_service
from storefront.services.webhook_service import (
    OUTCOME_ALREADY_PROCESSED,
    OUTCOME_IGNORED,
    OUTCOME_NOT_FOUND,
    OUTCOME_PROCESSED,
    ReconciliationError,
    parse_gateway_event,
    reconcile,
)

from conftest import checkout_paid_payload, payment_event_payload


@pytest.fixture
def order(db_session, buyer, variant, pricing, config):
    """Pending order for 2 shirts (total PHP 1556.00) with the items still in the cart."""
    cart_service.add_to_cart(buyer.id, variant.id, 2)
    purchase, payment = purchase_service.create_product_purchase(
        buyer.id, [{"variant_id": variant.id, "quantity": 2}], config,
    )
    return purchase, payment


def _paid(purchase_id, **kwargs):
    return parse_gateway_event(checkout_paid_payload(purchase_id=purchase_id, **kwargs))


# =============================================================================
# PAID
# =============================================================================

def test_paid_event_confirms_order(db_session, order, variant, buyer, config):
    purchase, payment = order

    with mail.record_messages() as outbox:
        result = reconcile(_paid(purchase.id, amount=155600), config)

    assert result.outcome == OUTCOME_PROCESSED
    assert result.purchase_id == purchase.id
    assert result.payment_id == payment.id

    purchase = db.session.get(Purchase, purchase.id)
    payment = db.session.get(Payment, payment.id)
    assert purchase.status == PURCHASE_PROCESSING
    assert payment.status == PAYMENT_PAID
    assert payment.payment_date is not None
    assert payment.transaction_id == "cs_test_1"
    assert payment.payment_intent_id == "pi_test_1"
    assert stock_service.get_stock(variant.id) == 8

    assert db.session.query(CartItem).filter_by(user_id=buyer.id).count() == 0
    titles = [n.title for n in db.session.query(Notification).filter_by(user_id=buyer.id)]
    assert "Payment Received" in titles

    assert len(outbox) == 1
    assert outbox[0].subject == f"Order #{purchase.id} confirmed"
    assert outbox[0].recipients == ["buyer@test.local"]
    assert "1556.00" in outbox[0].body


def test_duplicate_paid_delivery_is_idempotent(db_session, order, variant, config):
    purchase, payment = order

    first = reconcile(_paid(purchase.id), config)
    second = reconcile(_paid(purchase.id), config)
    third = reconcile(parse_gateway_event(payment_event_payload("payment.paid", purchase_id=purchase.id)), config)

    assert first.outcome == OUTCOME_PROCESSED
    assert second.outcome == OUTCOME_ALREADY_PROCESSED
    assert third.outcome == OUTCOME_ALREADY_PROCESSED
    assert stock_service.get_stock(variant.id) == 8
    assert db.session.get(Purchase, purchase.id).status == PURCHASE_PROCESSING


def test_payment_found_by_intent_id_without_metadata(db_session, order, config):
    purchase, payment = order
    payment.payment_intent_id = "pi_known"
    db.session.commit()

    result = reconcile(_paid(None, intent_id="pi_known", session_id="cs_other"), config)

    assert result.outcome == OUTCOME_PROCESSED
    assert result.payment_id == payment.id


def test_payment_found_by_transaction_id(db_session, order, config):
    purchase, payment = order
    payment.transaction_id = "cs_checkout_9"
    db.session.commit()

    result = reconcile(_paid(None, intent_id="pi_unknown", session_id="cs_checkout_9"), config)

    assert result.outcome == OUTCOME_PROCESSED
    assert result.purchase_id == purchase.id


def test_unmatched_payment_reports_not_found(db_session, order, variant, config):
    result = reconcile(_paid(None, intent_id="pi_nobody", session_id="cs_nobody"), config)

    assert result.outcome == OUTCOME_NOT_FOUND
    assert stock_service.get_stock(variant.id) == 10


def test_insufficient_stock_rolls_back_everything(db_session, order, variant, config):
    purchase, payment = order
    stock_service.adjust_stock(variant.id, -9)

    with pytest.raises(ReconciliationError) as excinfo:
        reconcile(_paid(purchase.id), config)

    assert excinfo.value.details["variant_id"] == variant.id
    assert db.session.get(Purchase, purchase.id).status == PURCHASE_PENDING
    assert db.session.get(Payment, payment.id).status == PAYMENT_PENDING
    assert stock_service.get_stock(variant.id) == 1


def test_paid_after_cancellation_keeps_purchase_cancelled(db_session, order, buyer, variant, config):
    purchase, payment = order
    purchase_service.cancel_purchase(purchase.id, buyer, config)

    result = reconcile(_paid(purchase.id), config)

    assert result.outcome == OUTCOME_ALREADY_PROCESSED
    assert db.session.get(Purchase, purchase.id).status == PURCHASE_CANCELLED
    assert db.session.get(Payment, payment.id).status == PAYMENT_PAID
    assert stock_service.get_stock(variant.id) == 10


# =============================================================================
# FAILED / CANCELLED / CHARGEABLE
# =============================================================================

def test_failed_payment_cancels_pending_order(db_session, order, buyer, variant, config):
    purchase, payment = order
    event = parse_gateway_event(payment_event_payload(
        "payment.failed", purchase_id=purchase.id, failed_code="card_declined", failed_message="Card was declined",
    ))

    with mail.record_messages() as outbox:
        result = reconcile(event, config)

    assert result.outcome == OUTCOME_PROCESSED
    purchase = db.session.get(Purchase, purchase.id)
    payment = db.session.get(Payment, payment.id)
    assert purchase.status == PURCHASE_CANCELLED
    assert purchase.cancelled_at is not None
    assert payment.status == PAYMENT_FAILED
    assert payment.failure_code == "card_declined"
    assert payment.failure_message == "Card was declined"
    assert stock_service.get_stock(variant.id) == 10

    failure = db.session.query(Notification).filter_by(user_id=buyer.id, title="Payment Failed").one()
    assert "Card was declined" in failure.message
    assert [m.subject for m in outbox] == [f"Payment for order #{purchase.id} failed"]


def test_failure_after_success_changes_nothing(db_session, order, variant, config):
    purchase, payment = order
    reconcile(_paid(purchase.id), config)

    result = reconcile(parse_gateway_event(payment_event_payload("payment.failed", purchase_id=purchase.id)), config)

    assert result.outcome == OUTCOME_ALREADY_PROCESSED
    assert db.session.get(Payment, payment.id).status == PAYMENT_PAID
    assert db.session.get(Purchase, purchase.id).status == PURCHASE_PROCESSING
    assert stock_service.get_stock(variant.id) == 8


def test_cancelled_payment_event(db_session, order, config):
    purchase, payment = order

    result = reconcile(parse_gateway_event(payment_event_payload("payment.cancelled", purchase_id=purchase.id)), config)

    assert result.outcome == OUTCOME_PROCESSED
    assert db.session.get(Payment, payment.id).status == "cancelled"
    assert db.session.get(Purchase, purchase.id).status == PURCHASE_CANCELLED


def test_chargeable_source_moves_payment_to_processing(db_session, order, config):
    purchase, payment = order

    first = reconcile(parse_gateway_event(payment_event_payload("source.chargeable", purchase_id=purchase.id)), config)
    second = reconcile(parse_gateway_event(payment_event_payload("source.chargeable", purchase_id=purchase.id)), config)

    assert first.outcome == OUTCOME_PROCESSED
    assert second.outcome == OUTCOME_ALREADY_PROCESSED
    assert db.session.get(Payment, payment.id).status == PAYMENT_PROCESSING
    assert db.session.get(Purchase, purchase.id).status == PURCHASE_PENDING


def test_unhandled_event_type_is_ignored(db_session, order, config):
    result = reconcile(parse_gateway_event(payment_event_payload("payment.refunded", purchase_id=order[0].id)), config)
    assert result.outcome == OUTCOME_IGNORED


# =============================================================================
# TICKETS
# =============================================================================

def test_paid_ticket_purchase_issues_tickets_once(db_session, buyer, event, config):
    booking = ticket_service.create_ticket_purchase(buyer.id, event.id, 2, config)
    purchase = booking["purchase"]
    assert booking["tickets"] == []

    with mail.record_messages() as outbox:
        first = reconcile(_paid(purchase.id), config)
    second = reconcile(_paid(purchase.id), config)

    assert first.outcome == OUTCOME_PROCESSED
    assert second.outcome == OUTCOME_ALREADY_PROCESSED

    tickets = db.session.query(Ticket).filter_by(purchase_id=purchase.id).all()
    assert len(tickets) == 2
    assert {t.status for t in tickets} == {TICKET_STATUS_CONFIRMED}
    assert all(t.price_cents == 50000 for t in tickets)
    assert len({t.ticket_number for t in tickets}) == 2
    assert db.session.get(Purchase, purchase.id).status == PURCHASE_PROCESSING

    assert outbox[0].subject == "Your tickets for Launch Night"
    titles = {n.title for n in db.session.query(Notification).filter_by(user_id=buyer.id)}
    assert {"Payment Received", "Tickets Confirmed"} <= titles


def test_seats_sold_out_before_payment_rolls_back(db_session, make_user, event, config):
    first_buyer = make_user("first@test.local")
    second_buyer = make_user("second@test.local")
    first = ticket_service.create_ticket_purchase(first_buyer.id, event.id, 2, config)["purchase"]
    second = ticket_service.create_ticket_purchase(second_buyer.id, event.id, 2, config)["purchase"]

    assert reconcile(_paid(first.id), config).outcome == OUTCOME_PROCESSED
    with pytest.raises(ReconciliationError):
        reconcile(_paid(second.id, intent_id="pi_second", session_id="cs_second"), config)

    assert db.session.get(Purchase, second.id).status == PURCHASE_PENDING
    assert db.session.query(Ticket).filter_by(purchase_id=second.id).count() == 0
    assert db.session.query(Ticket).filter_by(event_id=event.id).count() == 2
