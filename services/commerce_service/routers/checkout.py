"""Checkout session router: sessions, payment step, confirmation, gateway webhook."""

import hashlib
import hmac
import json
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.currency import from_cents
from libs.common.logging import get_logger
from libs.common.rate_limit import payment_limit
from libs.db.session import get_async_db
from services.commerce_service.collaborators import (
    AddressBook,
    CatalogProvider,
    InventoryAdjuster,
    NotificationDispatcher,
    PaymentGateway,
    PaymentReconciler,
)
from services.commerce_service.dependencies import (
    get_address_book,
    get_catalog,
    get_inventory,
    get_notifier,
    get_payment_gateway,
    get_reconciler,
)
from services.commerce_service.models import PaymentState
from services.commerce_service.schemas import (
    CheckoutSessionResponse,
    CreateListingSessionRequest,
    OrderResponse,
    PaymentIntentResponse,
    PaymentStatusResponse,
    SessionUpdateRequest,
)
from services.commerce_service.services import (
    checkout_sessions,
    order_materializer,
    payment_intents,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])

# Gateway event type -> payment state
GATEWAY_EVENT_STATES = {
    "payment_intent.succeeded": PaymentState.SUCCEEDED,
    "payment_intent.payment_failed": PaymentState.FAILED,
    "payment_intent.canceled": PaymentState.FAILED,
    "payment_intent.processing": PaymentState.PENDING,
}


# ============================================================================
# SESSIONS
# ============================================================================


@router.post(
    "/sessions/cart",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_session_from_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    catalog: CatalogProvider = Depends(get_catalog),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Start checkout with everything in the cart."""
    return await checkout_sessions.create_from_cart(
        db,
        buyer_id=current_user.user_id,
        catalog=catalog,
        gateway=gateway,
        reconciler=reconciler,
    )


@router.post(
    "/sessions/listing",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_session_from_listing(
    payload: CreateListingSessionRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    catalog: CatalogProvider = Depends(get_catalog),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Buy-now checkout for a single listing."""
    return await checkout_sessions.create_from_listing(
        db,
        buyer_id=current_user.user_id,
        listing_id=payload.listing_id,
        quantity=payload.quantity,
        variant_id=payload.variant_id,
        catalog=catalog,
        gateway=gateway,
        reconciler=reconciler,
    )


@router.get("/sessions/active", response_model=Optional[CheckoutSessionResponse])
async def get_active_session(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """The caller's live session, or null."""
    return await checkout_sessions.get_active(db, buyer_id=current_user.user_id)


@router.patch("/sessions/{session_id}", response_model=CheckoutSessionResponse)
async def update_session(
    session_id: uuid.UUID,
    payload: SessionUpdateRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    address_book: AddressBook = Depends(get_address_book),
    catalog: CatalogProvider = Depends(get_catalog),
):
    return await checkout_sessions.update_session(
        db,
        session_id=session_id,
        buyer_id=current_user.user_id,
        patch=payload,
        address_book=address_book,
        catalog=catalog,
    )


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_session(
    session_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Abandon checkout. Cancelling twice is fine."""
    await checkout_sessions.cancel_session(
        db,
        session_id=session_id,
        buyer_id=current_user.user_id,
        gateway=gateway,
        reconciler=reconciler,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# PAYMENT
# ============================================================================


@router.post(
    "/sessions/{session_id}/payment-intent", response_model=PaymentIntentResponse
)
@payment_limit
async def create_payment_intent(
    request: Request,
    session_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Create (or return the existing) payment intent for the session total."""
    result = await payment_intents.create_payment_intent(
        db, session_id=session_id, buyer_id=current_user.user_id, gateway=gateway
    )
    return PaymentIntentResponse.model_validate(result)


@router.get(
    "/sessions/{session_id}/payment-status", response_model=PaymentStatusResponse
)
async def get_payment_status(
    session_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    result = await payment_intents.get_payment_status(
        db,
        session_id=session_id,
        buyer_id=current_user.user_id,
        gateway=gateway,
        reconciler=reconciler,
    )
    return PaymentStatusResponse.model_validate(result)


@router.post(
    "/sessions/{session_id}/confirm",
    response_model=list[OrderResponse],
    status_code=status.HTTP_201_CREATED,
)
async def confirm_session(
    session_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    inventory: InventoryAdjuster = Depends(get_inventory),
    catalog: CatalogProvider = Depends(get_catalog),
    notifier: NotificationDispatcher = Depends(get_notifier),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Place the orders: one per seller in the session."""
    return await order_materializer.confirm_session(
        db,
        session_id=session_id,
        buyer_id=current_user.user_id,
        gateway=gateway,
        inventory=inventory,
        catalog=catalog,
        notifier=notifier,
        reconciler=reconciler,
    )


# ============================================================================
# GATEWAY WEBHOOK
# ============================================================================


def verify_webhook_signature(payload: bytes, signature: Optional[str]) -> bool:
    """HMAC-SHA256 of the raw body with PAYMENT_WEBHOOK_SECRET."""
    secret = get_settings().PAYMENT_WEBHOOK_SECRET
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


@router.post("/webhooks/payments")
async def payment_gateway_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Apply payment intent events pushed by the gateway."""
    body = await request.body()
    if not verify_webhook_signature(body, request.headers.get("X-Gateway-Signature")):
        logger.warning("Rejected payment webhook with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = json.loads(body)
        event_type = event["type"]
    except (ValueError, KeyError, TypeError):
        raise HTTPException(status_code=400, detail="Malformed event")

    state = GATEWAY_EVENT_STATES.get(event_type)
    if state is None:
        logger.info("Ignoring payment webhook event %s", event_type)
        return {"received": True, "applied": False}

    try:
        intent = event["data"]["object"]
        intent_ref = intent["id"]
        amount = from_cents(int(intent["amount"]))
        currency = intent["currency"]
    except (ValueError, KeyError, TypeError):
        raise HTTPException(status_code=400, detail="Malformed event")

    applied = await payment_intents.reconcile_gateway_event(
        db,
        intent_ref=intent_ref,
        state=state,
        amount=amount,
        currency=currency,
        reconciler=reconciler,
    )
    return {"received": True, "applied": applied is not None}
