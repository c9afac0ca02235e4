import pytest

from storefront.services.webhook_service import (
    KIND_CANCELLED,
    KIND_CHARGEABLE,
    KIND_FAILED,
    KIND_IGNORED,
    KIND_PAID,
    WebhookPayloadError,
    parse_gateway_event,
)

from conftest import checkout_paid_payload, payment_event_payload


def test_checkout_session_paid_shape():
    event = parse_gateway_event(checkout_paid_payload(purchase_id=42, intent_id="pi_abc", session_id="cs_abc", amount=155600))

    assert event.event_type == "checkout_session.payment.paid"
    assert event.kind == KIND_PAID
    assert event.event_id == "evt_test_1"
    assert event.payment_intent_id == "pi_abc"
    assert event.transaction_id == "cs_abc"
    assert event.metadata == {"purchase_id": "42"}
    assert event.amount_cents == 155600


def test_payment_paid_shape():
    event = parse_gateway_event(payment_event_payload("payment.paid", purchase_id=7, intent_id="pi_x", payment_id="pay_x", amount=1000))

    assert event.kind == KIND_PAID
    assert event.payment_intent_id == "pi_x"
    assert event.transaction_id == "pay_x"
    assert event.metadata == {"purchase_id": "7"}
    assert event.amount_cents == 1000
    assert event.currency == "PHP"


def test_payment_failed_carries_failure_details():
    event = parse_gateway_event(payment_event_payload(
        "payment.failed", purchase_id=7, failed_code="card_declined", failed_message="Card was declined",
    ))

    assert event.kind == KIND_FAILED
    assert event.failure_code == "card_declined"
    assert event.failure_message == "Card was declined"


def test_cancelled_and_chargeable_kinds():
    assert parse_gateway_event(payment_event_payload("payment.cancelled")).kind == KIND_CANCELLED
    assert parse_gateway_event(payment_event_payload("source.chargeable")).kind == KIND_CHARGEABLE


def test_unknown_event_type_is_ignored_not_rejected():
    event = parse_gateway_event(payment_event_payload("payment.refunded"))
    assert event.kind == KIND_IGNORED


def test_flat_payload_shape():
    event = parse_gateway_event({
        "type": "payment.paid",
        "data": {"id": "pay_flat", "attributes": {"payment_intent_id": "pi_flat", "metadata": {"purchase_id": 3}}},
    })

    assert event.kind == KIND_PAID
    assert event.payment_intent_id == "pi_flat"
    assert event.transaction_id == "pay_flat"
    assert event.metadata == {"purchase_id": 3}


def test_missing_metadata_defaults_to_empty():
    event = parse_gateway_event(payment_event_payload("payment.paid"))
    assert event.metadata == {}


@pytest.mark.parametrize("payload", [
    [],
    "payment.paid",
    {},
    {"data": {"id": "evt", "type": "event", "attributes": {}}},
])
def test_unrecognizable_payload_raises(payload):
    with pytest.raises(WebhookPayloadError):
        parse_gateway_event(payload)
