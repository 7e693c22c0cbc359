"""Refund obligations for money captured against checkouts that will not ship.

A session row is the only link between a gateway intent and a buyer's
checkout. Before one is deleted its intent is settled here: a pending intent
is cancelled at the gateway and a succeeded one becomes a refund obligation.
Obligations are keyed by intent, so flagging the same payment twice (for
example from a poll and a redelivered webhook) files one obligation.
"""

from decimal import Decimal
from typing import Optional

from libs.common.logging import get_logger

from services.commerce_service.collaborators import PaymentGateway, PaymentReconciler
from services.commerce_service.errors import SessionNotModifiableError
from services.commerce_service.models import CheckoutSession, PaymentState

logger = get_logger(__name__)


def refund_reference(intent_ref: str) -> str:
    return f"payment-{intent_ref}"


async def flag_captured_payment(
    reconciler: PaymentReconciler,
    *,
    intent_ref: str,
    amount: Decimal,
    currency: str,
    reason: str,
) -> None:
    await reconciler.flag_refund(
        intent_ref=intent_ref,
        amount=amount,
        currency=currency,
        reason=reason,
        reference=refund_reference(intent_ref),
    )


async def flag_unmaterializable_payment(
    session: CheckoutSession, reconciler: PaymentReconciler, *, reason: str
) -> None:
    """Raise a refund obligation for money captured against a dead session."""
    logger.warning(
        "Payment %s succeeded for checkout session %s which cannot be confirmed (%s)",
        session.payment_intent_ref,
        session.id,
        reason,
    )
    await flag_captured_payment(
        reconciler,
        intent_ref=session.payment_intent_ref,
        amount=session.total_amount,
        currency=session.currency,
        reason=reason,
    )


async def release_session_payment(
    session: CheckoutSession,
    *,
    gateway: PaymentGateway,
    reconciler: PaymentReconciler,
) -> Optional[PaymentState]:
    """Settle the gateway side of a session that is about to be deleted.

    Returns the intent's final state, or None when the session has no intent.
    Raises ``SessionNotModifiableError`` when a live session turns out to be
    paid; it has to be confirmed, not thrown away. Gateway errors propagate
    and the caller keeps the session.
    """
    intent_ref = session.payment_intent_ref
    if not intent_ref:
        return None

    # Cached state is advisory: a "failed" intent may still be paid later
    state = await gateway.get_intent_status(intent_ref)
    if state == PaymentState.PENDING:
        state = await gateway.cancel_intent(intent_ref)
        logger.info(
            "Cancelled payment intent %s of checkout session %s (now %s)",
            intent_ref,
            session.id,
            state.value,
        )

    if state != PaymentState.SUCCEEDED:
        return state
    if not session.is_expired():
        raise SessionNotModifiableError(
            "A paid checkout is waiting to be confirmed",
            details={"session_id": str(session.id), "payment_intent_ref": intent_ref},
        )
    await flag_unmaterializable_payment(
        session, reconciler, reason="checkout_session_expired"
    )
    return state
