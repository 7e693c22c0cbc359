"""Turn a paid (or COD-eligible) checkout session into orders.

``confirm_session`` is all-or-nothing: one order per seller group is
inserted and the session row deleted in a single transaction. Two guards
keep it at-most-once under concurrency: the session row is locked and
version-checked on delete, and ``(checkout_session_id, seller_id)`` is unique
on ``orders``.
"""

import uuid
from datetime import datetime

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from services.commerce_service.collaborators import (
    CatalogProvider,
    InventoryAdjuster,
    NotificationDispatcher,
    PaymentGateway,
    PaymentReconciler,
    StockLine,
)
from services.commerce_service.errors import (
    CheckoutIncompleteError,
    ConcurrencyConflictError,
    PaymentNotCompletedError,
    SessionAlreadyConfirmedError,
    SessionExpiredError,
)
from services.commerce_service.models import (
    CheckoutSession,
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderStatusHistory,
    PaymentMethod,
    PaymentState,
    SessionType,
)
from services.commerce_service.schemas import SellerGroup
from services.commerce_service.services.checkout_sessions import (
    load_session,
    materialized_order_numbers,
    session_groups,
)
from services.commerce_service.services.events import notify, order_payload
from services.commerce_service.services.order_status_policy import INITIAL_STATUS
from services.commerce_service.services.pricing import check_payment_method
from services.commerce_service.services.refunds import flag_unmaterializable_payment

logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 5


def _check_complete(session: CheckoutSession) -> None:
    missing = [
        name
        for name in ("delivery_method", "delivery_address", "payment_method")
        if not getattr(session, name)
    ]
    if missing:
        raise CheckoutIncompleteError(missing)


async def _settle_payment(
    session: CheckoutSession, gateway: PaymentGateway
) -> OrderPaymentStatus:
    """Payment status the new orders start with; raises if payment isn't done."""
    if session.payment_method == PaymentMethod.COD:
        check_payment_method(PaymentMethod.COD, session.total_amount)
        return OrderPaymentStatus.PENDING

    if not session.payment_intent_ref:
        raise PaymentNotCompletedError(
            "Payment has not been started for this checkout",
            details={"session_id": str(session.id)},
        )
    state = await gateway.get_intent_status(session.payment_intent_ref)
    if state != PaymentState.SUCCEEDED:
        raise PaymentNotCompletedError(
            f"Payment is {state.value}",
            details={
                "session_id": str(session.id),
                "payment_intent_ref": session.payment_intent_ref,
                "payment_state": state.value,
            },
        )
    return OrderPaymentStatus.PAID


async def _unique_order_number(db: AsyncSession, taken: set[str]) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = Order.generate_order_number()
        if candidate in taken:
            continue
        clash = await db.scalar(
            select(Order.id).where(Order.order_number == candidate)
        )
        if clash is None:
            taken.add(candidate)
            return candidate
    raise RuntimeError("Could not allocate a unique order number")


def _build_order(
    session: CheckoutSession,
    group: SellerGroup,
    *,
    order_number: str,
    payment_status: OrderPaymentStatus,
    now: datetime,
) -> Order:
    order = Order(
        id=uuid.uuid4(),
        order_number=order_number,
        checkout_session_id=session.id,
        buyer_id=session.buyer_id,
        seller_id=group.seller_id,
        seller_name=group.seller_name,
        status=INITIAL_STATUS,
        payment_status=payment_status,
        payment_method=session.payment_method,
        payment_intent_ref=session.payment_intent_ref,
        delivery_method=session.delivery_method,
        delivery_address=dict(session.delivery_address),
        items_total=group.subtotal,
        delivery_fee=group.delivery_fee,
        tax=group.tax,
        total_discount=group.discount,
        total_amount=group.total_amount,
        currency=session.currency,
        created_at=now,
        updated_at=now,
    )
    order.items = [
        OrderItem(
            position=position,
            listing_id=item.listing_id,
            variant_id=item.variant_id,
            name=item.name,
            image=item.image,
            quantity=item.quantity,
            unit_price=item.unit_price,
            unit_discount=item.unit_discount,
            line_total=item.line_total,
        )
        for position, item in enumerate(group.items, start=1)
    ]
    order.status_history = [
        OrderStatusHistory(
            position=1,
            status=INITIAL_STATUS,
            note="Order placed",
            changed_by=session.buyer_id,
            changed_at=now,
        )
    ]
    return order


async def confirm_session(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    buyer_id: str,
    gateway: PaymentGateway,
    inventory: InventoryAdjuster,
    catalog: CatalogProvider,
    notifier: NotificationDispatcher,
    reconciler: PaymentReconciler,
) -> list[Order]:
    """Materialize a session into one pending order per seller."""
    try:
        session = await load_session(
            db,
            session_id=session_id,
            buyer_id=buyer_id,
            for_update=True,
            allow_expired=True,
        )
        if session.is_expired():
            if session.payment_intent_ref:
                state = await gateway.get_intent_status(session.payment_intent_ref)
                if state == PaymentState.SUCCEEDED:
                    await flag_unmaterializable_payment(
                        session, reconciler, reason="checkout_session_expired"
                    )
            raise SessionExpiredError(session_id)

        _check_complete(session)
        payment_status = await _settle_payment(session, gateway)

        now = utc_now()
        taken: set[str] = set()
        orders = []
        for group in session_groups(session):
            order_number = await _unique_order_number(db, taken)
            orders.append(
                _build_order(
                    session,
                    group,
                    order_number=order_number,
                    payment_status=payment_status,
                    now=now,
                )
            )

        from_cart = session.session_type == SessionType.FROM_CART
        stock_lines = [
            StockLine(
                listing_id=item.listing_id,
                quantity=item.quantity,
                variant_id=item.variant_id,
            )
            for order in orders
            for item in order.items
        ]
        reference = f"checkout-{session_id}"

        db.add_all(orders)
        await db.flush()
        await db.delete(session)
        await db.flush()
    except (IntegrityError, StaleDataError) as exc:
        await db.rollback()
        order_numbers = await materialized_order_numbers(db, session_id, buyer_id)
        logger.warning(
            "Concurrent confirm of checkout session %s lost the race: %s",
            session_id,
            exc,
        )
        if order_numbers:
            raise SessionAlreadyConfirmedError(session_id, order_numbers) from exc
        raise ConcurrencyConflictError("Checkout session", session_id) from exc
    except Exception:
        await db.rollback()
        raise

    try:
        await inventory.decrement(stock_lines, reference=reference)
    except Exception:
        await db.rollback()
        logger.error(
            "Stock decrement failed for checkout session %s; no orders created",
            session_id,
        )
        raise

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(
            "Commit failed for checkout session %s; restoring stock", session_id
        )
        await inventory.restore(stock_lines, reference=reference)
        raise

    logger.info(
        "Checkout session %s confirmed into %d order(s): %s",
        session_id,
        len(orders),
        ", ".join(order.order_number for order in orders),
    )

    for order in orders:
        payload = order_payload(order)
        await notify(
            notifier, recipient_id=order.buyer_id, event="order_placed", payload=payload
        )
        await notify(
            notifier,
            recipient_id=order.seller_id,
            event="order_received",
            payload=payload,
        )
    if from_cart:
        await _clear_checked_out_cart_items(catalog, buyer_id, stock_lines)
    return orders


async def _clear_checked_out_cart_items(
    catalog: CatalogProvider, buyer_id: str, stock_lines: list[StockLine]
) -> None:
    listing_ids = sorted({line.listing_id for line in stock_lines})
    try:
        await catalog.remove_cart_items(buyer_id, listing_ids)
    except Exception:
        logger.warning(
            "Could not clear %d checked-out item(s) from cart of %s",
            len(listing_ids),
            buyer_id,
            exc_info=True,
        )
