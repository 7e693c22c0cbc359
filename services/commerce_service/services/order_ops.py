"""Post-creation order changes: status updates and cancellation.

These are the only functions that change ``Order.status`` after creation.
Each change locks the order row, is checked against the status policy,
appends one history entry and commits. The order's version counter and the
unique ``(order_id, position)`` history key reject a concurrent duplicate.
"""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from services.commerce_service.collaborators import (
    InventoryAdjuster,
    NotificationDispatcher,
    PaymentReconciler,
    StockLine,
)
from services.commerce_service.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    OrderAlreadyInStatusError,
    OrderNotFoundError,
    OrderPermissionError,
)
from services.commerce_service.models import (
    ActorRole,
    CancelReason,
    Order,
    OrderPaymentStatus,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
)
from services.commerce_service.services.events import notify, order_payload
from services.commerce_service.services.order_status_policy import (
    STATUS_TIMESTAMP_FIELDS,
    can_advance_status,
    can_cancel,
    can_transition,
    is_terminal,
    next_statuses,
    resolve_actor_role,
)

logger = get_logger(__name__)


# ============================================================================
# QUERIES
# ============================================================================


async def get_order(
    db: AsyncSession, order_id: uuid.UUID, *, for_update: bool = False
) -> Order:
    query = select(Order).where(Order.id == order_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    order = (await db.execute(query)).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


async def get_order_for_user(
    db: AsyncSession, *, order_id: uuid.UUID, user_id: str, is_admin: bool = False
) -> tuple[Order, ActorRole]:
    """Order plus the caller's role on it; outsiders get ``OrderNotFoundError``."""
    order = await get_order(db, order_id)
    role = resolve_actor_role(order, user_id, is_admin=is_admin)
    if role is None:
        raise OrderNotFoundError(order_id)
    return order, role


async def list_orders(
    db: AsyncSession,
    *,
    buyer_id: Optional[str] = None,
    seller_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Order], int]:
    """Newest first. Without a party filter this lists every order (admin)."""
    filters = []
    if buyer_id is not None:
        filters.append(Order.buyer_id == buyer_id)
    if seller_id is not None:
        filters.append(Order.seller_id == seller_id)
    if status is not None:
        filters.append(Order.status == status)

    total = await db.scalar(select(func.count()).select_from(Order).where(*filters))
    result = await db.execute(
        select(Order)
        .where(*filters)
        .order_by(Order.created_at.desc(), Order.order_number.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


# ============================================================================
# MUTATIONS
# ============================================================================


def _append_status(
    order: Order,
    status: OrderStatus,
    *,
    note: Optional[str],
    actor_id: str,
    now: datetime,
) -> None:
    order.status = status
    stamp_field = STATUS_TIMESTAMP_FIELDS.get(status)
    if stamp_field and getattr(order, stamp_field) is None:
        setattr(order, stamp_field, now)
    order.updated_at = now
    order.status_history.append(
        OrderStatusHistory(
            position=len(order.status_history) + 1,
            status=status,
            note=note,
            changed_by=actor_id,
            changed_at=now,
        )
    )


def _transition_error(
    cls, message: str, order: Order, requested: OrderStatus
) -> InvalidTransitionError:
    return cls(
        message,
        current=order.status.value,
        requested=requested.value,
        allowed=sorted(s.value for s in next_statuses(order.status)),
    )


async def _flush(db: AsyncSession, order_id: uuid.UUID) -> None:
    try:
        await db.flush()
    except (StaleDataError, IntegrityError) as exc:
        await db.rollback()
        logger.warning("Concurrent write on order %s: %s", order_id, exc)
        raise ConcurrencyConflictError("Order", order_id) from exc


async def update_order_status(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    actor_id: str,
    actor_role: ActorRole,
    new_status: OrderStatus,
    note: Optional[str] = None,
    notifier: NotificationDispatcher,
    inventory: InventoryAdjuster,
    reconciler: PaymentReconciler,
) -> Order:
    """Move an order forward; cancellation is routed through ``cancel_order``."""
    new_status = OrderStatus(new_status)
    actor_role = ActorRole(actor_role)
    if new_status == OrderStatus.CANCELLED:
        return await cancel_order(
            db,
            order_id=order_id,
            actor_id=actor_id,
            actor_role=actor_role,
            reason=CancelReason.OTHER,
            description=note,
            notifier=notifier,
            inventory=inventory,
            reconciler=reconciler,
        )

    try:
        order = await get_order(db, order_id, for_update=True)
        previous = order.status
        if new_status == previous:
            raise _transition_error(
                OrderAlreadyInStatusError,
                f"Order is already {previous.value}",
                order,
                new_status,
            )
        if not can_advance_status(order, actor_role):
            if is_terminal(previous):
                raise _transition_error(
                    InvalidTransitionError,
                    f"Order is {previous.value} and can no longer change",
                    order,
                    new_status,
                )
            raise _transition_error(
                OrderPermissionError,
                f"A {actor_role.value} cannot change this order's status",
                order,
                new_status,
            )
        if not can_transition(previous, new_status):
            raise _transition_error(
                InvalidTransitionError,
                f"Cannot move order from {previous.value} to {new_status.value}",
                order,
                new_status,
            )

        _append_status(order, new_status, note=note, actor_id=actor_id, now=utc_now())
        if (
            new_status == OrderStatus.COMPLETED
            and order.payment_method == PaymentMethod.COD
        ):
            order.payment_status = OrderPaymentStatus.COD_CONFIRMED
    except Exception:
        await db.rollback()
        raise

    await _flush(db, order_id)
    await db.commit()
    logger.info(
        "Order %s: %s -> %s by %s %s",
        order.order_number,
        previous.value,
        new_status.value,
        actor_role.value,
        actor_id,
    )
    await notify(
        notifier,
        recipient_id=order.buyer_id,
        event=f"order_{new_status.value}",
        payload=order_payload(order) | {"note": note},
    )
    return order


async def cancel_order(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    actor_id: str,
    actor_role: ActorRole,
    reason: CancelReason,
    description: Optional[str] = None,
    notifier: NotificationDispatcher,
    inventory: InventoryAdjuster,
    reconciler: PaymentReconciler,
) -> Order:
    """Cancel an order, restore its stock and raise a refund if it was paid."""
    actor_role = ActorRole(actor_role)
    reason = CancelReason(reason)
    try:
        order = await get_order(db, order_id, for_update=True)
        previous = order.status
        if previous == OrderStatus.CANCELLED:
            raise _transition_error(
                OrderAlreadyInStatusError,
                "Order is already cancelled",
                order,
                OrderStatus.CANCELLED,
            )
        if not can_cancel(order, actor_role):
            raise _transition_error(
                InvalidTransitionError,
                f"A {actor_role.value} cannot cancel an order that is {previous.value}",
                order,
                OrderStatus.CANCELLED,
            )

        note = f"Reason: {reason.value}."
        if description:
            note = f"{note} {description}"
        _append_status(
            order, OrderStatus.CANCELLED, note=note, actor_id=actor_id, now=utc_now()
        )
        order.cancel_reason = reason
        order.cancel_description = description
        order.cancelled_by = actor_id
    except Exception:
        await db.rollback()
        raise

    order_number = order.order_number
    stock_lines = [
        StockLine(
            listing_id=item.listing_id,
            quantity=item.quantity,
            variant_id=item.variant_id,
        )
        for item in order.items
    ]
    reference = f"order-{order_number}-cancel"
    refund = None
    if order.payment_status == OrderPaymentStatus.PAID and order.payment_intent_ref:
        refund = {
            "intent_ref": order.payment_intent_ref,
            "amount": order.total_amount,
            "currency": order.currency,
            "reason": f"order_cancelled:{reason.value}",
            "reference": f"order-{order_number}",
        }

    await _flush(db, order_id)
    try:
        await inventory.restore(stock_lines, reference=reference)
        if refund:
            await reconciler.flag_refund(**refund)
    except Exception:
        await db.rollback()
        logger.error("Cancelling order %s failed; order left unchanged", order_number)
        raise

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(
            "Commit failed cancelling order %s; re-reserving stock", order_number
        )
        await inventory.decrement(stock_lines, reference=reference)
        raise

    logger.info(
        "Order %s cancelled (%s -> cancelled) by %s %s: %s",
        order_number,
        previous.value,
        actor_role.value,
        actor_id,
        reason.value,
    )
    payload = order_payload(order) | {"reason": reason.value}
    other_party = order.seller_id if actor_role == ActorRole.BUYER else order.buyer_id
    await notify(
        notifier, recipient_id=other_party, event="order_cancelled", payload=payload
    )
    if actor_role == ActorRole.ADMIN:
        await notify(
            notifier,
            recipient_id=order.seller_id,
            event="order_cancelled",
            payload=payload,
        )
    return order
