"""
Stripe PaymentIntents client.

Provides async methods for:
- Creating a payment intent (idempotent per key)
- Reading an intent's status, normalised to checkout's payment states
- Cancelling an intent that will never be paid
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.currency import from_cents, to_cents

from services.commerce_service.collaborators import GatewayIntent
from services.commerce_service.errors import PaymentGatewayError
from services.commerce_service.models.enums import PaymentState

logger = logging.getLogger(__name__)

# Only "succeeded" counts as paid; everything still in flight is pending.
STRIPE_STATUS_MAP = {
    "succeeded": PaymentState.SUCCEEDED,
    "canceled": PaymentState.FAILED,
    "requires_payment_method": PaymentState.PENDING,
    "requires_confirmation": PaymentState.PENDING,
    "requires_action": PaymentState.PENDING,
    "processing": PaymentState.PENDING,
    "requires_capture": PaymentState.PENDING,
}


def map_stripe_status(status: Optional[str]) -> PaymentState:
    return STRIPE_STATUS_MAP.get(status or "", PaymentState.PENDING)


class StripeClient:
    """Async client for the Stripe PaymentIntents API."""

    def __init__(
        self, secret_key: Optional[str] = None, base_url: Optional[str] = None
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        if not self.secret_key:
            raise ValueError("STRIPE_SECRET_KEY is required")
        self.base_url = base_url or settings.STRIPE_API_BASE
        self._headers = {"Authorization": f"Bearer {self.secret_key}"}

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        """Make an async request to the Stripe API (form-encoded)."""
        url = f"{self.base_url}{endpoint}"
        headers = dict(self._headers)
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.request(
                    method=method, url=url, headers=headers, data=data
                )
        except httpx.HTTPError as exc:
            logger.error("Stripe request to %s failed: %s", endpoint, exc)
            raise PaymentGatewayError(f"gateway unreachable ({exc.__class__.__name__})")

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if not response.is_success:
            error = payload.get("error", {}) if isinstance(payload, dict) else {}
            logger.error("Stripe API error: %s - %s", response.status_code, error)
            raise PaymentGatewayError(
                error.get("message", "Unknown Stripe error"),
                gateway_status=response.status_code,
                response_data=payload,
            )

        return payload

    # =========================================================================
    # Payment intents
    # =========================================================================

    async def create_intent(
        self,
        *,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict] = None,
    ) -> GatewayIntent:
        data = {
            "amount": to_cents(amount),
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)

        payload = await self._request(
            "POST", "/v1/payment_intents", data=data, idempotency_key=idempotency_key
        )
        return GatewayIntent(
            intent_id=payload["id"],
            client_secret=payload["client_secret"],
            state=map_stripe_status(payload.get("status")),
            amount=from_cents(payload.get("amount", 0)),
            currency=payload.get("currency", currency),
            metadata=payload.get("metadata") or {},
        )

    async def get_intent_status(self, intent_id: str) -> PaymentState:
        payload = await self._request("GET", f"/v1/payment_intents/{intent_id}")
        return map_stripe_status(payload.get("status"))

    async def cancel_intent(self, intent_id: str) -> PaymentState:
        try:
            payload = await self._request(
                "POST", f"/v1/payment_intents/{intent_id}/cancel"
            )
        except PaymentGatewayError as exc:
            # Stripe refuses to cancel succeeded or already canceled intents
            if exc.gateway_status != 400:
                raise
            state = await self.get_intent_status(intent_id)
            logger.info(
                "Stripe intent %s not cancelled, it is %s", intent_id, state.value
            )
            return state
        return map_stripe_status(payload.get("status"))


def get_stripe_client() -> StripeClient:
    return StripeClient()
