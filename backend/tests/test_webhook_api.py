import json

import pytest

from storefront.extensions import db
from storefront.models import Payment, Purchase
from storefront.models.orders import PAYMENT_PAID, PURCHASE_CANCELLED, PURCHASE_PENDING, PURCHASE_PROCESSING
from storefront.services import purchase_service, stock_service

from conftest import checkout_paid_payload, payment_event_payload


@pytest.fixture
def order(db_session, buyer, variant, pricing, config):
    purchase, _ = purchase_service.create_product_purchase(
        buyer.id, [{"variant_id": variant.id, "quantity": 2}], config,
    )
    return purchase


def test_paid_webhook_confirms_order(order, variant, post_webhook):
    response = post_webhook(checkout_paid_payload(purchase_id=order.id, amount=155600))

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "success"
    assert body["outcome"] == "processed"
    assert body["purchase_id"] == order.id
    assert db.session.get(Purchase, order.id).status == PURCHASE_PROCESSING
    assert stock_service.get_stock(variant.id) == 8


def test_duplicate_delivery_is_acknowledged(order, variant, post_webhook):
    payload = checkout_paid_payload(purchase_id=order.id)
    post_webhook(payload)

    response = post_webhook(payload)

    assert response.status_code == 200
    assert response.get_json()["outcome"] == "already_processed"
    assert stock_service.get_stock(variant.id) == 8


def test_live_mode_signature_is_accepted(order, post_webhook):
    from storefront.services.webhook_service import sign_payload
    from conftest import WEBHOOK_SECRET

    body = json.dumps(checkout_paid_payload(purchase_id=order.id)).encode("utf-8")
    response = post_webhook(None, raw=body, signature=sign_payload(body, WEBHOOK_SECRET, live=True))

    assert response.status_code == 200


@pytest.mark.parametrize("kwargs", [
    {"secret": "whsk_wrong"},
    {"signature": ""},
    {"signature": "t=1,te=deadbeef,li="},
])
def test_bad_signature_is_rejected(order, post_webhook, kwargs):
    response = post_webhook(checkout_paid_payload(purchase_id=order.id), **kwargs)

    assert response.status_code == 401
    assert db.session.get(Purchase, order.id).status == PURCHASE_PENDING


def test_tampered_body_is_rejected(order, post_webhook):
    from storefront.services.webhook_service import sign_payload
    from conftest import WEBHOOK_SECRET

    original = json.dumps(checkout_paid_payload(purchase_id=order.id)).encode("utf-8")
    tampered = original.replace(b"pi_test_1", b"pi_evil_1")

    response = post_webhook(None, raw=tampered, signature=sign_payload(original, WEBHOOK_SECRET))
    assert response.status_code == 401


def test_invalid_json_is_rejected(db_session, post_webhook):
    response = post_webhook(None, raw=b"{not json")
    assert response.status_code == 400


def test_event_without_type_is_rejected(db_session, post_webhook):
    response = post_webhook({"data": {"attributes": {"data": {}}}})
    assert response.status_code == 400


def test_unmatched_payment_returns_not_found(db_session, post_webhook):
    response = post_webhook(checkout_paid_payload(purchase_id=999999, intent_id="pi_unknown"))

    assert response.status_code == 404
    assert response.get_json()["outcome"] == "not_found"


def test_stock_shortage_returns_conflict(order, variant, post_webhook):
    stock_service.adjust_stock(variant.id, -9)

    response = post_webhook(checkout_paid_payload(purchase_id=order.id))

    assert response.status_code == 409
    assert "details" in response.get_json()
    assert db.session.get(Purchase, order.id).status == PURCHASE_PENDING
    assert stock_service.get_stock(variant.id) == 1


def test_payment_failed_webhook(order, post_webhook):
    response = post_webhook(payment_event_payload(
        "payment.failed", purchase_id=order.id, failed_code="card_declined", failed_message="Card was declined",
    ))

    assert response.status_code == 200
    assert response.get_json()["outcome"] == "processed"
    assert db.session.get(Purchase, order.id).status == PURCHASE_CANCELLED


def test_unhandled_event_type_is_acknowledged(db_session, post_webhook):
    response = post_webhook(payment_event_payload("payment.refunded", purchase_id=1))

    assert response.status_code == 200
    assert response.get_json()["outcome"] == "ignored"


def test_unexpected_error_returns_500(order, post_webhook, monkeypatch):
    from storefront.services import webhook_service

    def boom(event, config):
        raise RuntimeError("database on fire")

    monkeypatch.setattr(webhook_service, "reconcile", boom)

    response = post_webhook(checkout_paid_payload(purchase_id=order.id))
    assert response.status_code == 500


def test_payment_row_records_gateway_ids(order, post_webhook):
    post_webhook(payment_event_payload("payment.paid", purchase_id=order.id, intent_id="pi_x", payment_id="pay_x"))

    payment = db.session.query(Payment).filter_by(purchase_id=order.id).one()
    assert payment.status == PAYMENT_PAID
    assert payment.payment_intent_id == "pi_x"
    assert payment.transaction_id == "pay_x"
