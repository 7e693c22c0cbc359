"""Bridge between checkout sessions and the payment gateway.

The gateway is the only source of truth for "paid": cached session state is
advisory and never enough to materialize orders. A success reported for an
expired session, or for an intent no session holds any more, is turned into a
refund obligation instead of orders.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.common.logging import get_logger
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from services.commerce_service.collaborators import PaymentGateway, PaymentReconciler
from services.commerce_service.errors import (
    CheckoutIncompleteError,
    CommerceError,
    ConcurrencyConflictError,
    PaymentMethodNotAllowedError,
    SessionExpiredError,
)
from services.commerce_service.models import CheckoutSession, Order, PaymentState
from services.commerce_service.services.checkout_sessions import load_session
from services.commerce_service.services.pricing import (
    GATEWAY_METHODS,
    check_payment_method,
)
from services.commerce_service.services.refunds import (
    flag_captured_payment,
    flag_unmaterializable_payment,
)

logger = get_logger(__name__)


@dataclass
class PaymentIntentResult:
    intent_id: str
    client_secret: str
    amount: Decimal
    currency: str
    reused: bool = False


@dataclass
class PaymentStatusResult:
    session_id: uuid.UUID
    status: PaymentState
    intent_id: Optional[str] = None


async def _cache_state(
    db: AsyncSession, session_id: uuid.UUID, state: PaymentState
) -> bool:
    """Store the latest gateway state; ``succeeded`` is never overwritten.

    Returns False when the row already holds ``succeeded``. No version bump.
    """
    result = await db.execute(
        update(CheckoutSession)
        .where(
            CheckoutSession.id == session_id,
            or_(
                CheckoutSession.payment_state.is_(None),
                CheckoutSession.payment_state != PaymentState.SUCCEEDED,
            ),
        )
        .values(payment_state=state)
    )
    await db.commit()
    return bool(result.rowcount)


# ============================================================================
# INTENT CREATION
# ============================================================================


async def _claim_attempt(
    db: AsyncSession, *, session_id: uuid.UUID, buyer_id: str
) -> tuple[CheckoutSession, Optional[PaymentIntentResult]]:
    """Lock the session and either reuse its live intent or claim an attempt.

    A claim is ``payment_state=pending`` with no intent ref yet. A second call
    that finds the claim reuses its attempt number, so both reach the gateway
    with the same idempotency key and get the same intent.
    """
    session = await load_session(
        db, session_id=session_id, buyer_id=buyer_id, for_update=True
    )
    if session.payment_method is None:
        raise CheckoutIncompleteError(["payment_method"])
    if session.payment_method not in GATEWAY_METHODS:
        raise PaymentMethodNotAllowedError(
            f"{session.payment_method.value} is not paid through the gateway",
            details={"payment_method": session.payment_method.value},
        )
    check_payment_method(session.payment_method, session.total_amount)

    if session.payment_intent_ref and session.payment_state != PaymentState.FAILED:
        return session, PaymentIntentResult(
            intent_id=session.payment_intent_ref,
            client_secret=session.payment_client_secret,
            amount=session.total_amount,
            currency=session.currency,
            reused=True,
        )

    claimed = session.payment_intent_ref is None and (
        session.payment_state == PaymentState.PENDING
    )
    if not claimed:
        session.payment_attempts += 1
        session.payment_intent_ref = None
        session.payment_client_secret = None
        session.payment_state = PaymentState.PENDING
    return session, None


async def _release_claim(db: AsyncSession, session_id: uuid.UUID, attempt: int):
    # The next call starts a fresh attempt with a new idempotency key
    await db.execute(
        update(CheckoutSession)
        .where(
            CheckoutSession.id == session_id,
            CheckoutSession.payment_attempts == attempt,
            CheckoutSession.payment_intent_ref.is_(None),
        )
        .values(payment_state=PaymentState.FAILED)
    )
    await db.commit()


async def create_payment_intent(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    buyer_id: str,
    gateway: PaymentGateway,
) -> PaymentIntentResult:
    """Create (or reuse) the gateway intent sized to the session total.

    The session row is not locked during the gateway call: the attempt is
    claimed and committed first, and the intent is recorded afterwards if the
    session still holds that claim. An intent nobody can record is cancelled.
    """
    try:
        session, existing = await _claim_attempt(
            db, session_id=session_id, buyer_id=buyer_id
        )
        if existing is not None:
            await db.rollback()
            logger.info(
                "Reusing payment intent %s for checkout session %s",
                existing.intent_id,
                session_id,
            )
            return existing
        attempt = session.payment_attempts
        amount = session.total_amount
        currency = session.currency
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConcurrencyConflictError("Checkout session", session_id) from exc
    except Exception:
        await db.rollback()
        raise

    try:
        intent = await gateway.create_intent(
            amount=amount,
            currency=currency,
            idempotency_key=f"checkout-{session_id}-{attempt}",
            metadata={"checkout_session_id": str(session_id), "buyer_id": buyer_id},
        )
    except Exception:
        await _release_claim(db, session_id, attempt)
        raise

    try:
        session = await load_session(
            db, session_id=session_id, buyer_id=buyer_id, for_update=True
        )
        if session.payment_attempts != attempt or session.payment_intent_ref not in (
            None,
            intent.intent_id,
        ):
            raise ConcurrencyConflictError("Checkout session", session_id)
        session.payment_intent_ref = intent.intent_id
        session.payment_client_secret = intent.client_secret
        if session.payment_state != PaymentState.SUCCEEDED:
            session.payment_state = intent.state
        await db.commit()
    except (CommerceError, StaleDataError) as exc:
        await db.rollback()
        logger.warning(
            "Checkout session %s changed while intent %s was created; cancelling it",
            session_id,
            intent.intent_id,
        )
        await gateway.cancel_intent(intent.intent_id)
        if isinstance(exc, StaleDataError):
            raise ConcurrencyConflictError("Checkout session", session_id) from exc
        raise
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Created payment intent %s for checkout session %s (%s %s)",
        intent.intent_id,
        session_id,
        amount,
        currency,
    )
    return PaymentIntentResult(
        intent_id=intent.intent_id,
        client_secret=intent.client_secret,
        amount=amount,
        currency=currency,
    )


# ============================================================================
# STATUS AND RECONCILIATION
# ============================================================================


async def get_payment_status(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    buyer_id: str,
    gateway: PaymentGateway,
    reconciler: PaymentReconciler,
) -> PaymentStatusResult:
    """Poll the gateway for the session's intent."""
    session = await load_session(
        db, session_id=session_id, buyer_id=buyer_id, allow_expired=True
    )
    expired = session.is_expired()
    if not session.payment_intent_ref:
        if expired:
            raise SessionExpiredError(session_id)
        return PaymentStatusResult(session_id=session.id, status=PaymentState.PENDING)

    state = await gateway.get_intent_status(session.payment_intent_ref)
    if expired:
        if state == PaymentState.SUCCEEDED:
            await flag_unmaterializable_payment(
                session, reconciler, reason="checkout_session_expired"
            )
        raise SessionExpiredError(session_id)

    intent_id = session.payment_intent_ref
    if state != session.payment_state:
        await _cache_state(db, session.id, state)
    return PaymentStatusResult(session_id=session_id, status=state, intent_id=intent_id)


async def reconcile_gateway_event(
    db: AsyncSession,
    *,
    intent_ref: str,
    state: PaymentState,
    amount: Decimal,
    currency: str,
    reconciler: PaymentReconciler,
) -> Optional[PaymentState]:
    """Apply a gateway callback to the session holding ``intent_ref``.

    Returns the applied state, or None when nothing changed: no live session
    holds the intent, or the event would move a succeeded payment backwards.
    A success for an intent that neither a session nor an order holds is
    flagged for refund using the amount the gateway reports.
    """
    result = await db.execute(
        select(CheckoutSession).where(CheckoutSession.payment_intent_ref == intent_ref)
    )
    session = result.scalar_one_or_none()
    if session is None:
        materialized = await db.scalar(
            select(Order.id).where(Order.payment_intent_ref == intent_ref).limit(1)
        )
        if materialized is not None:
            logger.info("Gateway event for %s: orders already exist", intent_ref)
        elif state == PaymentState.SUCCEEDED:
            logger.warning(
                "Payment %s succeeded but no checkout session or order holds it",
                intent_ref,
            )
            await flag_captured_payment(
                reconciler,
                intent_ref=intent_ref,
                amount=amount,
                currency=currency,
                reason="checkout_session_gone",
            )
        else:
            logger.info(
                "Gateway event %s for unknown payment intent %s",
                state.value,
                intent_ref,
            )
        return None

    if session.is_expired():
        if state == PaymentState.SUCCEEDED:
            await flag_unmaterializable_payment(
                session, reconciler, reason="checkout_session_expired"
            )
        return state

    if state == session.payment_state:
        return state
    if not await _cache_state(db, session.id, state):
        logger.info(
            "Ignoring %s event for payment intent %s: already succeeded",
            state.value,
            intent_ref,
        )
        return None
    logger.info(
        "Payment intent %s for checkout session %s is now %s",
        intent_ref,
        session.id,
        state.value,
    )
    return state
