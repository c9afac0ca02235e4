"""
HTTP-level tests for the JSON API: auth, cart, shipping, purchases,
checkout, events, notifications, admin and health.
"""

import httpx
import pytest

from storefront.extensions import db
from storefront.models import Payment, Purchase
from storefront.services.paymongo_client import PayMongoClient

from conftest import CEBU_ADDRESS, PASSWORD


def _install_gateway(app, handler):
    app.extensions["paymongo_client"] = PayMongoClient(
        base_url="https://api.paymongo.test/v1",
        secret_key="sk_test_123",
        max_retries=0,
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# AUTH
# =============================================================================

def test_register_login_and_me(client, db_session):
    response = client.post('/api/auth/register', json={
        "name": "New Buyer", "email": "New@Test.Local", "password": PASSWORD,
    })
    assert response.status_code == 201
    assert response.get_json()["user"]["email"] == "new@test.local"

    response = client.post('/api/auth/login', json={"email": "new@test.local", "password": PASSWORD})
    assert response.status_code == 200
    token = response.get_json()["token"]
    headers = {'Authorization': f'Bearer {token}'}

    response = client.put('/api/auth/profile', json=CEBU_ADDRESS, headers=headers)
    assert response.status_code == 200

    me = client.get('/api/auth/me', headers=headers).get_json()
    assert me["user"]["name"] == "New Buyer"
    assert me["profile"]["city"] == "Mandaue"

    assert client.post('/api/auth/logout', headers=headers).status_code == 200
    assert client.get('/api/auth/me', headers=headers).status_code == 401


def test_register_rejects_weak_password(client, db_session):
    response = client.post('/api/auth/register', json={"name": "X", "email": "x@test.local", "password": "short"})
    assert response.status_code == 400


def test_login_failures(client, buyer):
    assert client.post('/api/auth/login', json={"email": buyer.email}).status_code == 400
    assert client.post('/api/auth/login', json={"email": buyer.email, "password": "Wrong123!"}).status_code == 401


def test_protected_routes_require_token(client, db_session):
    assert client.get('/api/cart/').status_code == 401
    assert client.get('/api/purchases/', headers={'Authorization': 'Bearer nope'}).status_code == 401


# =============================================================================
# CATALOG / CART / SHIPPING
# =============================================================================

def test_products_listing(client, variant):
    products = client.get('/api/products/').get_json()["products"]
    assert products[0]["name"] == "Tour Shirt"
    assert client.get(f'/api/products/{products[0]["id"]}').status_code == 200
    assert client.get('/api/products/999999').status_code == 404


def test_cart_flow(client, buyer, variant, auth_headers):
    headers = auth_headers(buyer)

    response = client.post('/api/cart/', json={"variant_id": variant.id, "quantity": 2}, headers=headers)
    assert response.status_code == 201
    item_id = response.get_json()["item"]["id"]

    response = client.post('/api/cart/', json={"variant_id": variant.id, "quantity": 9}, headers=headers)
    assert response.status_code == 400

    items = client.get('/api/cart/', headers=headers).get_json()["items"]
    assert [(i["variant_id"], i["quantity"]) for i in items] == [(variant.id, 2)]

    assert client.delete(f'/api/cart/{item_id}', headers=headers).status_code == 200
    assert client.delete(f'/api/cart/{item_id}', headers=headers).status_code == 404
    assert client.delete('/api/cart/', headers=headers).get_json() == {"removed": 0}


def test_shipping_resolve(client, pricing):
    body = client.get('/api/shipping/resolve?city=Mandaue&province=Cebu').get_json()
    assert body["region"] == "cebu"
    assert body["shipping_price"]["price_cents"] == 10000

    body = client.get('/api/shipping/resolve?city=Davao City&province=Davao del Sur').get_json()
    assert body["region"] == "mindanao"
    assert body["shipping_price"] is None


def test_shipping_quote(client, pricing):
    response = client.post('/api/shipping/quote', json={
        "city": "Mandaue", "province": "Cebu",
        "lines": [{"unit_price_cents": 65000, "quantity": 2}],
    })
    assert response.status_code == 200
    quote = response.get_json()["quote"]
    assert quote["region"] == "cebu"
    assert quote["total_cents"] == 155600
    assert quote["total"] == "1556.00"

    assert client.post('/api/shipping/quote', json={"lines": []}).status_code == 400
    assert client.post('/api/shipping/quote', json={"lines": [{"quantity": 1}]}).status_code == 400


# =============================================================================
# PURCHASES / CHECKOUT
# =============================================================================

def test_create_and_cancel_purchase(client, buyer, variant, pricing, auth_headers):
    headers = auth_headers(buyer)

    response = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 2, "price": 1}],
    }, headers=headers)
    assert response.status_code == 201
    body = response.get_json()
    purchase_id = body["purchase"]["id"]
    assert body["purchase"]["total_cents"] == 155600
    assert body["payment"]["status"] == "pending"

    detail = client.get(f'/api/purchases/{purchase_id}', headers=headers).get_json()["purchase"]
    assert len(detail["payments"]) == 1
    assert len(detail["items"]) == 1

    response = client.put(f'/api/purchases/{purchase_id}/cancel', headers=headers)
    assert response.status_code == 200
    assert response.get_json()["purchase"]["status"] == "cancelled"

    assert client.put(f'/api/purchases/{purchase_id}/cancel', headers=headers).status_code == 409


def test_create_purchase_errors(client, buyer, admin, make_user, variant, pricing, auth_headers):
    response = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 50}],
    }, headers=auth_headers(buyer))
    assert response.status_code == 400
    assert response.get_json()["details"]["shortages"][0]["available"] == 10

    no_address = make_user("nowhere@test.local")
    response = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 1}],
    }, headers=auth_headers(no_address))
    assert response.status_code == 400
    assert "missing" in response.get_json()["details"]

    response = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 1}],
    }, headers=auth_headers(admin))
    assert response.status_code == 403


def test_purchases_are_private(client, buyer, make_user, variant, pricing, auth_headers):
    purchase_id = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 1}],
    }, headers=auth_headers(buyer)).get_json()["purchase"]["id"]

    stranger = auth_headers(make_user("stranger@test.local"))
    assert client.get(f'/api/purchases/{purchase_id}', headers=stranger).status_code == 404
    assert client.get('/api/purchases/', headers=stranger).get_json()["purchases"] == []


def test_checkout_records_gateway_ids(app, client, buyer, variant, pricing, auth_headers):
    headers = auth_headers(buyer)
    purchase_id = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 2}],
    }, headers=headers).get_json()["purchase"]["id"]

    def handler(request):
        return httpx.Response(200, json={"data": {
            "id": "cs_abc",
            "attributes": {"checkout_url": "https://checkout.test/cs_abc", "payment_intent": {"id": "pi_abc"}},
        }})

    _install_gateway(app, handler)

    response = client.post(f'/api/payments/purchases/{purchase_id}/checkout', headers=headers)
    assert response.status_code == 200
    body = response.get_json()
    assert body["checkout_url"] == "https://checkout.test/cs_abc"
    assert body["payment"]["payment_intent_id"] == "pi_abc"

    payment = db.session.query(Payment).filter_by(purchase_id=purchase_id).one()
    assert payment.transaction_id == "cs_abc"


def test_checkout_gateway_rejection(app, client, buyer, variant, pricing, auth_headers):
    headers = auth_headers(buyer)
    purchase_id = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 1}],
    }, headers=headers).get_json()["purchase"]["id"]

    _install_gateway(app, lambda request: httpx.Response(401, json={"errors": [{"code": "unauthorized"}]}))

    response = client.post(f'/api/payments/purchases/{purchase_id}/checkout', headers=headers)
    assert response.status_code == 400
    assert client.post('/api/payments/purchases/999999/checkout', headers=headers).status_code == 404


def test_verify_payment_reads_gateway_status(app, client, buyer, variant, pricing, auth_headers):
    headers = auth_headers(buyer)
    body = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 1}],
    }, headers=headers).get_json()
    payment_id = body["payment"]["id"]

    payment = db.session.get(Payment, payment_id)
    payment.payment_intent_id = "pi_verify"
    db.session.commit()

    _install_gateway(app, lambda request: httpx.Response(200, json={"data": {
        "id": "pi_verify", "attributes": {"status": "awaiting_payment_method", "amount": 73800},
    }}))

    response = client.get(f'/api/payments/{payment_id}/verify', headers=headers)
    assert response.status_code == 200
    assert response.get_json()["gateway_status"] == "awaiting_payment_method"
    assert response.get_json()["payment"]["status"] == "pending"

    _install_gateway(app, lambda request: httpx.Response(503))
    assert client.get(f'/api/payments/{payment_id}/verify', headers=headers).status_code == 502


# =============================================================================
# EVENTS / NOTIFICATIONS
# =============================================================================

def test_book_free_event_tickets(client, buyer, free_event, auth_headers):
    headers = auth_headers(buyer)

    response = client.post(f'/api/events/{free_event.id}/tickets', json={"quantity": 2}, headers=headers)
    assert response.status_code == 201
    body = response.get_json()
    assert body["payment"] is None
    assert body["purchase"]["status"] == "completed"
    assert len(body["tickets"]) == 2

    tickets = client.get('/api/events/tickets/mine', headers=headers).get_json()["tickets"]
    assert len(tickets) == 2

    response = client.put(f'/api/events/tickets/{tickets[0]["id"]}/cancel', headers=headers)
    assert response.get_json()["ticket"]["status"] == "cancelled"


def test_book_tickets_errors(client, buyer, event, auth_headers):
    headers = auth_headers(buyer)
    assert client.post(f'/api/events/{event.id}/tickets', json={"quantity": 4}, headers=headers).status_code == 409
    assert client.post(f'/api/events/{event.id}/tickets', json={"quantity": 9}, headers=headers).status_code == 400
    assert client.post('/api/events/999999/tickets', json={"quantity": 1}, headers=headers).status_code == 404


def test_notification_inbox_routes(client, buyer, variant, pricing, auth_headers):
    headers = auth_headers(buyer)
    purchase_id = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 1}],
    }, headers=headers).get_json()["purchase"]["id"]
    client.put(f'/api/purchases/{purchase_id}/cancel', headers=headers)

    body = client.get('/api/notifications/?unread=true', headers=headers).get_json()
    assert body["unread_count"] == 1
    notification_id = body["notifications"][0]["id"]

    assert client.put(f'/api/notifications/{notification_id}/read', headers=headers).status_code == 200
    assert client.get('/api/notifications/', headers=headers).get_json()["unread_count"] == 0
    assert client.put('/api/notifications/read-all', headers=headers).get_json() == {"updated": 0}
    assert client.delete(f'/api/notifications/{notification_id}', headers=headers).status_code == 200
    assert client.delete(f'/api/notifications/{notification_id}', headers=headers).status_code == 404


# =============================================================================
# ADMIN
# =============================================================================

def test_admin_routes_require_admin(client, buyer, auth_headers):
    headers = auth_headers(buyer)
    assert client.get('/api/admin/purchases', headers=headers).status_code == 403
    assert client.put('/api/admin/shipping-prices', json={"region": "cebu", "price_cents": 1}, headers=headers).status_code == 403


def test_admin_fulfilment(client, buyer, admin, variant, pricing, auth_headers, post_webhook):
    from conftest import checkout_paid_payload

    purchase_id = client.post('/api/purchases/', json={
        "items": [{"variant_id": variant.id, "quantity": 1}],
    }, headers=auth_headers(buyer)).get_json()["purchase"]["id"]
    headers = auth_headers(admin)

    response = client.put(f'/api/admin/purchases/{purchase_id}/status', json={"status": "processing"}, headers=headers)
    assert response.status_code == 409

    assert post_webhook(checkout_paid_payload(purchase_id=purchase_id)).status_code == 200

    listed = client.get('/api/admin/purchases?status=processing', headers=headers).get_json()["purchases"]
    assert [p["id"] for p in listed] == [purchase_id]

    response = client.put(f'/api/admin/purchases/{purchase_id}/status', json={"status": "shipped"}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()["purchase"]["status"] == "shipped"

    assert client.put(f'/api/admin/purchases/{purchase_id}/status', json={}, headers=headers).status_code == 400
    assert client.put('/api/admin/purchases/999999/status', json={"status": "shipped"}, headers=headers).status_code == 404


def test_admin_pricing_tables(client, admin, auth_headers):
    headers = auth_headers(admin)

    response = client.put('/api/admin/shipping-prices', json={"region": "visayas", "price_cents": 12000}, headers=headers)
    assert response.status_code == 200
    row_id = response.get_json()["shipping_price"]["id"]
    assert client.put('/api/admin/shipping-prices', json={"region": "mars", "price_cents": 1}, headers=headers).status_code == 400

    response = client.put('/api/admin/tax-prices', json={"name": "VAT", "rate_bps": 1200}, headers=headers)
    assert response.status_code == 200
    tax_id = response.get_json()["tax_price"]["id"]

    assert len(client.get('/api/admin/shipping-prices', headers=headers).get_json()["shipping_prices"]) == 1
    assert client.delete(f'/api/admin/shipping-prices/{row_id}', headers=headers).status_code == 200
    assert client.delete(f'/api/admin/tax-prices/{tax_id}', headers=headers).status_code == 200
    assert client.delete(f'/api/admin/tax-prices/{tax_id}', headers=headers).status_code == 404


def test_admin_stock_and_unsuspend(client, admin, buyer, variant, auth_headers):
    headers = auth_headers(admin)

    response = client.post(f'/api/admin/variants/{variant.id}/stock', json={"delta": 5}, headers=headers)
    assert response.get_json()["stock"] == 15
    assert client.post(f'/api/admin/variants/{variant.id}/stock', json={"delta": -50}, headers=headers).status_code == 400

    assert client.post(f'/api/admin/users/{buyer.id}/unsuspend', headers=headers).status_code == 400
    buyer.is_suspended = True
    db.session.commit()
    response = client.post(f'/api/admin/users/{buyer.id}/unsuspend', headers=headers)
    assert response.status_code == 200
    assert response.get_json()["user"]["is_suspended"] is False

    body = client.get(f'/api/admin/users/{buyer.id}/cancellations', headers=headers).get_json()
    assert body == {"user_id": buyer.id, "cancellations": 0, "threshold": 3}


def test_admin_event_and_scan(client, admin, buyer, auth_headers):
    headers = auth_headers(admin)

    response = client.post('/api/admin/events', json={"title": "Pop-up", "ticket_price_cents": 0, "max_tickets": 5}, headers=headers)
    assert response.status_code == 201
    event_id = response.get_json()["event"]["id"]

    ticket = client.post(f'/api/events/{event_id}/tickets', json={"quantity": 1},
                         headers=auth_headers(buyer)).get_json()["tickets"][0]

    response = client.post('/api/admin/tickets/scan', json={"qr_payload": ticket["qr_payload"]}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()["ticket"]["status"] == "used"

    assert client.post('/api/admin/tickets/scan', json={}, headers=headers).status_code == 400
    assert client.post('/api/admin/tickets/scan', json={"qr_payload": "a:b:c:d"}, headers=headers).status_code == 403


# =============================================================================
# HEALTH
# =============================================================================

def test_health_reports_degraded_without_pricing(client, db_session):
    response = client.get('/health')
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "degraded"
    assert body["checks"]["database"]["status"] == "healthy"


def test_health_is_healthy_when_configured(client, pricing):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"
