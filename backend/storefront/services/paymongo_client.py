# Overview: Outbound PayMongo API client (checkout sessions, payment intent lookup).

"""
PayMongo Client

WHY: Checkout creation and payment verification call the gateway's REST
API. The gateway is a black box; this client only shapes requests,
retries transient failures, and unwraps the JSON:API envelope.

DESIGN:
- httpx.Client with HTTP basic auth (secret key as username)
- Transport errors and 5xx responses are retried with exponential backoff
- 4xx responses raise GatewayError immediately
- Amounts are integer centavos, which is what PayMongo expects
"""

from __future__ import annotations

import time

import httpx
from flask import current_app

from ..config import CommerceConfig, get_commerce_config


class GatewayError(Exception):
    """Raised when the payment gateway rejects or cannot serve a request."""

    def __init__(self, message: str, status_code: int | None = None, details=None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class PayMongoClient:
    def __init__(
        self,
        base_url: str,
        secret_key: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        backoff_base: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.backoff_base = backoff_base
        self._transport = transport

    @classmethod
    def from_config(cls, config: CommerceConfig, transport: httpx.BaseTransport | None = None) -> "PayMongoClient":
        return cls(
            base_url=config.paymongo_base_url,
            secret_key=config.paymongo_secret_key,
            timeout=config.paymongo_timeout_seconds,
            max_retries=config.paymongo_max_retries,
            transport=transport,
        )

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            auth=(self.secret_key, ""),
            timeout=self.timeout,
            headers={"Accept": "application/json"},
            transport=self._transport,
        )

    def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        if not self.secret_key:
            raise GatewayError("PayMongo secret key is not configured")

        last_exc: Exception | None = None
        with self._client() as client:
            for attempt in range(self.max_retries + 1):
                try:
                    response = client.request(method, path, json=json)
                except httpx.TransportError as exc:
                    last_exc = exc
                else:
                    if response.status_code < 400:
                        return response.json()
                    if response.status_code < 500:
                        raise GatewayError(
                            f"PayMongo rejected {method} {path}",
                            status_code=response.status_code,
                            details=_error_details(response),
                        )
                    last_exc = GatewayError(
                        f"PayMongo server error on {method} {path}",
                        status_code=response.status_code,
                        details=_error_details(response),
                    )
                if attempt < self.max_retries:
                    time.sleep(self.backoff_base * (2 ** attempt))

        if isinstance(last_exc, GatewayError):
            raise last_exc
        raise GatewayError(f"PayMongo unreachable: {last_exc}") from last_exc

    # =========================================================================
    # API
    # =========================================================================

    def create_checkout_session(
        self,
        amount_cents: int,
        currency: str,
        description: str,
        metadata: dict,
        success_url: str,
        cancel_url: str,
        payment_method_types: list[str] | None = None,
    ) -> dict:
        """
        Create a hosted checkout session.

        Returns:
            {"id": "cs_...", "checkout_url": ..., "payment_intent_id": "pi_..." | None}
        """
        body = {
            "data": {
                "attributes": {
                    "line_items": [{
                        "name": description,
                        "amount": int(amount_cents),
                        "currency": currency,
                        "quantity": 1,
                    }],
                    "payment_method_types": payment_method_types or ["gcash", "card", "paymaya", "grab_pay"],
                    "description": description,
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "metadata": {k: str(v) for k, v in metadata.items()},
                    "send_email_receipt": False,
                    "show_description": True,
                },
            },
        }
        data = self._request("POST", "/checkout_sessions", json=body).get("data") or {}
        attributes = data.get("attributes") or {}
        intent = attributes.get("payment_intent") or {}
        return {
            "id": data.get("id"),
            "checkout_url": attributes.get("checkout_url"),
            "payment_intent_id": intent.get("id") if isinstance(intent, dict) else intent,
            "raw": data,
        }

    def retrieve_payment_intent(self, intent_id: str) -> dict:
        """
        Fetch a payment intent.

        Returns:
            {"id": "pi_...", "status": "succeeded" | "awaiting_payment_method" | ..., "amount": int}
        """
        data = self._request("GET", f"/payment_intents/{intent_id}").get("data") or {}
        attributes = data.get("attributes") or {}
        return {
            "id": data.get("id"),
            "status": attributes.get("status"),
            "amount": attributes.get("amount"),
            "currency": attributes.get("currency"),
            "raw": data,
        }


def _error_details(response: httpx.Response):
    try:
        return response.json().get("errors")
    except ValueError:
        return response.text[:500]


def get_gateway_client() -> PayMongoClient:
    """Client for the current app (tests may install one with a mock transport)."""
    client = current_app.extensions.get("paymongo_client")
    if client is None:
        client = PayMongoClient.from_config(get_commerce_config())
    return client
