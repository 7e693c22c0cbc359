"""Unit tests for the Stripe client and internal service clients.

HTTP is stubbed at the helper boundary; no network access.
"""

from decimal import Decimal

import httpx
import pytest
from libs.common.config import get_settings
from services.commerce_service import clients
from services.commerce_service.errors import ListingNotFoundError, PaymentGatewayError
from services.commerce_service.models import PaymentState
from services.commerce_service.stripe_client import StripeClient, map_stripe_status


def _response(status_code: int, json=None, method="GET") -> httpx.Response:
    return httpx.Response(
        status_code, json=json, request=httpx.Request(method, "http://test")
    )


@pytest.mark.unit
def test_only_succeeded_counts_as_paid():
    assert map_stripe_status("succeeded") == PaymentState.SUCCEEDED
    assert map_stripe_status("canceled") == PaymentState.FAILED
    assert map_stripe_status("requires_action") == PaymentState.PENDING
    assert map_stripe_status("processing") == PaymentState.PENDING
    assert map_stripe_status(None) == PaymentState.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stripe_intent_is_created_in_minor_units(monkeypatch):
    calls = []

    async def _fake_request(self, method, endpoint, data=None, idempotency_key=None):
        calls.append((method, endpoint, data, idempotency_key))
        return {
            "id": "pi_123",
            "client_secret": "pi_123_secret",
            "status": "requires_payment_method",
            "amount": data["amount"],
            "currency": data["currency"],
        }

    monkeypatch.setattr(StripeClient, "_request", _fake_request)
    client = StripeClient(secret_key="sk_test_123")

    intent = await client.create_intent(
        amount=Decimal("50.00"),
        currency="myr",
        idempotency_key="checkout-abc-1",
        metadata={"checkout_session_id": "abc"},
    )

    ((method, endpoint, data, key),) = calls
    assert (method, endpoint, key) == ("POST", "/v1/payment_intents", "checkout-abc-1")
    assert data["amount"] == 5000
    assert data["metadata[checkout_session_id]"] == "abc"
    assert intent.intent_id == "pi_123"
    assert intent.amount == Decimal("50.00")
    assert intent.state == PaymentState.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stripe_cancel_of_a_paid_intent_reports_success(monkeypatch):
    calls = []

    async def _fake_request(self, method, endpoint, data=None, idempotency_key=None):
        calls.append((method, endpoint))
        if endpoint.endswith("/cancel"):
            raise PaymentGatewayError(
                "You cannot cancel this PaymentIntent", gateway_status=400
            )
        return {"id": "pi_123", "status": "succeeded"}

    monkeypatch.setattr(StripeClient, "_request", _fake_request)
    client = StripeClient(secret_key="sk_test_123")

    state = await client.cancel_intent("pi_123")

    assert state == PaymentState.SUCCEEDED
    assert calls == [
        ("POST", "/v1/payment_intents/pi_123/cancel"),
        ("GET", "/v1/payment_intents/pi_123"),
    ]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stripe_cancel_propagates_outages(monkeypatch):
    async def _fake_request(self, method, endpoint, data=None, idempotency_key=None):
        raise PaymentGatewayError("gateway unreachable (ConnectError)")

    monkeypatch.setattr(StripeClient, "_request", _fake_request)

    with pytest.raises(PaymentGatewayError):
        await StripeClient(secret_key="sk_test_123").cancel_intent("pi_123")


@pytest.mark.unit
def test_stripe_client_needs_a_key(monkeypatch):
    monkeypatch.setattr(get_settings(), "STRIPE_SECRET_KEY", "")
    with pytest.raises(ValueError):
        StripeClient()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_listing_maps_to_domain_error(monkeypatch):
    async def _fake_get(**kwargs):
        return _response(404, json={"detail": "Not found"})

    monkeypatch.setattr(clients, "internal_get", _fake_get)

    with pytest.raises(ListingNotFoundError):
        await clients.CatalogServiceClient(base_url="http://catalog").get_listing("L1")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_obligations_are_keyed_by_reference(monkeypatch):
    calls = []

    async def _fake_put(**kwargs):
        calls.append(kwargs)
        return _response(200, json={}, method="PUT")

    monkeypatch.setattr(clients, "internal_put", _fake_put)
    desk = clients.RefundDeskClient(base_url="http://payments")

    await desk.flag_refund(
        intent_ref="pi_123",
        amount=Decimal("22.22"),
        currency="myr",
        reason="order_cancelled:buyer_request",
        reference="order-ORD-20261019-ABC123",
    )

    (call,) = calls
    assert call["path"] == "/internal/refund-obligations/order-ORD-20261019-ABC123"
    assert call["json"]["intent_ref"] == "pi_123"
    assert call["json"]["amount"] == "22.22"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_campus_coverage_is_asked_in_one_call(monkeypatch):
    calls = []

    async def _fake_get(**kwargs):
        calls.append(kwargs)
        return _response(200, json={"seller_ids": ["S1"]})

    monkeypatch.setattr(clients, "internal_get", _fake_get)
    catalog = clients.CatalogServiceClient(base_url="http://catalog")

    covered = await catalog.sellers_delivering_to("Main Campus", ["S1", "S2"])

    assert covered == {"S1"}
    (call,) = calls
    assert call["params"] == {"campus": "Main Campus", "seller_ids": "S1,S2"}
