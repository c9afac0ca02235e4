"""
Pytest fixtures for storefront backend tests.

Provides the application on in-memory SQLite, a per-test clean database,
catalog / pricing / event fixtures, and helpers for auth headers and
signed PayMongo webhook payloads.
"""

import json

import pytest

from storefront import create_app
from storefront.config import get_commerce_config
from storefront.extensions import db
from storefront.models import Event, Product, ProductVariant, ShippingPrice, TaxPrice
from storefront.models.auth import ROLE_ADMIN, ROLE_USER
from storefront.services import auth_service, session_service
from storefront.services.webhook_service import sign_payload


WEBHOOK_SECRET = "whsk_test_secret"
PASSWORD = "Password123!"

TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-signing-key",
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "PAYMONGO_WEBHOOK_SECRET": WEBHOOK_SECRET,
    "PAYMONGO_WEBHOOK_TOLERANCE_SECONDS": 0,
    "PAYMONGO_SECRET_KEY": "sk_test_123",
    "PAYMONGO_MAX_RETRIES": 0,
    "STORE_ORIGIN_CITY": "Cebu City",
    "STORE_ORIGIN_PROVINCE": "Cebu",
    "DEFAULT_SHIPPING_REGION": "luzon",
    "MAIL_SUPPRESS_SEND": True,
    "MAIL_DEFAULT_SENDER": "shop@test.local",
    "NOTIFICATION_RELAY_URL": "",
    "SUSPENSION_CANCELLATION_THRESHOLD": 3,
    "MAX_TICKETS_PER_USER": 5,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """File-backed SQLite app so each thread gets its own connection."""
    app = create_app({**TEST_CONFIG, "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'storefront.sqlite3'}"})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions.pop("paymongo_client", None)

        yield db.session

        # Cleanup after test
        db.session.rollback()
        app.extensions.pop("paymongo_client", None)


@pytest.fixture(scope='function')
def config(app):
    return get_commerce_config()


# =============================================================================
# USERS
# =============================================================================

CEBU_ADDRESS = {
    "phone": "09171234567",
    "street": "123 A.C. Cortes Ave",
    "barangay": "Ibabao",
    "city": "Mandaue",
    "province": "Cebu",
    "zipcode": "6014",
}


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user(email, role="user", address=None)."""
    counter = {"n": 0}

    def _make(email=None, role=ROLE_USER, address=None, name=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@test.local"
        user = auth_service.create_user(name or email.split("@")[0], email, PASSWORD, role=role, rounds=4)
        if address:
            auth_service.update_profile(user.id, address)
        return user

    return _make


@pytest.fixture(scope='function')
def buyer(make_user):
    """Customer with a complete Cebu shipping address."""
    return make_user("buyer@test.local", address=CEBU_ADDRESS, name="Juan Buyer")


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("admin@test.local", role=ROLE_ADMIN, name="Store Admin")


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Factory: auth_headers(user) -> {"Authorization": "Bearer <token>"}."""
    def _headers(user):
        _session, token = session_service.create_session(user.id)
        return {'Authorization': f'Bearer {token}'}
    return _headers


# =============================================================================
# CATALOG / PRICING / EVENTS
# =============================================================================

@pytest.fixture(scope='function')
def pricing(db_session):
    """Cebu shipping at PHP 100.00, Luzon at PHP 150.00, 12% VAT."""
    db_session.add(ShippingPrice(region="cebu", price_cents=10000, is_active=True))
    db_session.add(ShippingPrice(region="luzon", price_cents=15000, is_active=True))
    db_session.add(TaxPrice(name="VAT", rate_bps=1200, is_active=True))
    db_session.commit()


@pytest.fixture(scope='function')
def variant(db_session):
    """Shirt variant priced PHP 650.00 with 10 in stock."""
    product = Product(name="Tour Shirt", description="Cotton tee", is_active=True)
    db_session.add(product)
    db_session.flush()
    v = ProductVariant(product_id=product.id, sku="SHIRT-M-BLK", size="M", color="Black", price_cents=65000, stock=10)
    db_session.add(v)
    db_session.commit()
    return v


@pytest.fixture(scope='function')
def event(db_session):
    """Paid event (PHP 500.00) with 3 seats."""
    e = Event(title="Launch Night", venue="Cebu City", ticket_price_cents=50000, max_tickets=3, is_active=True)
    db_session.add(e)
    db_session.commit()
    return e


@pytest.fixture(scope='function')
def free_event(db_session):
    e = Event(title="Open Rehearsal", venue="Cebu City", ticket_price_cents=0, max_tickets=10, is_active=True)
    db_session.add(e)
    db_session.commit()
    return e


# =============================================================================
# WEBHOOK PAYLOADS
# =============================================================================

def checkout_paid_payload(purchase_id=None, intent_id="pi_test_1", session_id="cs_test_1",
                          event_type="checkout_session.payment.paid", amount=None, event_id="evt_test_1"):
    """PayMongo checkout-session event envelope."""
    attributes = {
        "payment_intent": {"id": intent_id, "attributes": {"status": "succeeded"}},
        "metadata": {"purchase_id": str(purchase_id)} if purchase_id is not None else {},
    }
    if amount is not None:
        attributes["line_items"] = [{"amount": amount, "currency": "PHP", "quantity": 1}]
    return {
        "data": {
            "id": event_id,
            "type": "event",
            "attributes": {
                "type": event_type,
                "livemode": False,
                "data": {"id": session_id, "type": "checkout_session", "attributes": attributes},
            },
        }
    }


def payment_event_payload(event_type, purchase_id=None, intent_id="pi_test_1", payment_id="pay_test_1",
                          failed_code=None, failed_message=None, amount=None, event_id="evt_test_2"):
    """PayMongo payment resource event envelope (payment.paid / payment.failed)."""
    attributes = {
        "payment_intent_id": intent_id,
        "currency": "PHP",
        "metadata": {"purchase_id": str(purchase_id)} if purchase_id is not None else None,
    }
    if amount is not None:
        attributes["amount"] = amount
    if failed_code:
        attributes["failed_code"] = failed_code
    if failed_message:
        attributes["failed_message"] = failed_message
    return {
        "data": {
            "id": event_id,
            "type": "event",
            "attributes": {
                "type": event_type,
                "data": {"id": payment_id, "type": "payment", "attributes": attributes},
            },
        }
    }


@pytest.fixture(scope='function')
def post_webhook(client):
    """Factory: post_webhook(payload, secret=WEBHOOK_SECRET, signature=None) -> response."""
    def _post(payload, secret=WEBHOOK_SECRET, signature=None, raw=None):
        body = raw if raw is not None else json.dumps(payload).encode("utf-8")
        header = signature if signature is not None else sign_payload(body, secret)
        return client.post(
            '/api/webhooks/paymongo',
            data=body,
            headers={'Paymongo-Signature': header, 'Content-Type': 'application/json'},
        )
    return _post
