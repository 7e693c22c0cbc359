"""Unit tests for order status updates, cancellation and queries."""

import uuid

import pytest
from services.commerce_service.errors import (
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
    PaymentMethod,
)
from services.commerce_service.services.order_ops import (
    cancel_order,
    get_order_for_user,
    list_orders,
    update_order_status,
)
from services.commerce_service.services.order_status_policy import next_statuses
from sqlalchemy import select

from tests.factories import create_order

BUYER = "buyer-1"
SELLER = "seller-1"

# Every (from, to) pair the state machine forbids, cancellation aside
FORBIDDEN_MOVES = [
    (current, target)
    for current in OrderStatus
    for target in OrderStatus
    if target != OrderStatus.CANCELLED and target not in next_statuses(current)
]


@pytest.fixture
def collaborators(notifier, inventory, reconciler):
    return {"notifier": notifier, "inventory": inventory, "reconciler": reconciler}


async def _reload(db, order_id) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _set_status(
    db, order_id, status, collaborators, *, role=ActorRole.SELLER, note=None
):
    return await update_order_status(
        db,
        order_id=order_id,
        actor_id=SELLER if role == ActorRole.SELLER else BUYER,
        actor_role=role,
        new_status=status,
        note=note,
        **collaborators,
    )


async def _cancel(
    db, order_id, collaborators, *, role, actor_id, reason, description=None
):
    return await cancel_order(
        db,
        order_id=order_id,
        actor_id=actor_id,
        actor_role=role,
        reason=reason,
        description=description,
        **collaborators,
    )


# ---------------------------------------------------------------------------
# Status updates
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_seller_confirms_a_pending_order(db_session, notifier, collaborators):
    order = await create_order(db_session)

    updated = await _set_status(
        db_session, order.id, OrderStatus.CONFIRMED, collaborators, note="On it"
    )

    assert updated.status == OrderStatus.CONFIRMED
    assert updated.confirmed_at is not None
    history = updated.status_history
    assert [h.status for h in history] == [OrderStatus.PENDING, OrderStatus.CONFIRMED]
    assert [h.position for h in history] == [1, 2]
    assert history[-1].note == "On it"
    assert history[-1].changed_by == SELLER
    assert notifier.events_for(BUYER) == ["order_confirmed"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_shipped_order_example(db_session, collaborators):
    """A shipped order can be completed but not reopened or cancelled by the buyer."""
    order = await create_order(db_session, status=OrderStatus.SHIPPED)
    order_id = order.id

    with pytest.raises(InvalidTransitionError) as exc_info:
        await _set_status(db_session, order_id, OrderStatus.PENDING, collaborators)
    assert exc_info.value.details["allowed_statuses"] == ["completed", "delivered"]

    completed = await _set_status(
        db_session, order_id, OrderStatus.COMPLETED, collaborators
    )
    assert completed.status == OrderStatus.COMPLETED
    assert completed.completed_at is not None

    with pytest.raises(InvalidTransitionError):
        await _cancel(
            db_session,
            order_id,
            collaborators,
            role=ActorRole.BUYER,
            actor_id=BUYER,
            reason=CancelReason.BUYER_REQUEST,
        )


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("current, target", FORBIDDEN_MOVES)
async def test_forbidden_moves_change_nothing(
    db_session, collaborators, current, target
):
    order = await create_order(db_session, status=current)
    order_id = order.id
    history_before = len(order.status_history)

    with pytest.raises(InvalidTransitionError):
        await _set_status(db_session, order_id, target, collaborators)

    reloaded = await _reload(db_session, order_id)
    assert reloaded.status == current
    assert len(reloaded.status_history) == history_before


@pytest.mark.asyncio
@pytest.mark.unit
async def test_same_status_is_reported_as_such(db_session, collaborators):
    order = await create_order(db_session, status=OrderStatus.PROCESSING)

    with pytest.raises(OrderAlreadyInStatusError):
        await _set_status(db_session, order.id, OrderStatus.PROCESSING, collaborators)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_buyer_cannot_advance_status(db_session, collaborators):
    order = await create_order(db_session)

    with pytest.raises(OrderPermissionError):
        await _set_status(
            db_session,
            order.id,
            OrderStatus.CONFIRMED,
            collaborators,
            role=ActorRole.BUYER,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_can_advance_status(db_session, collaborators):
    order = await create_order(db_session, status=OrderStatus.CONFIRMED)

    updated = await update_order_status(
        db_session,
        order_id=order.id,
        actor_id="admin-1",
        actor_role=ActorRole.ADMIN,
        new_status=OrderStatus.SHIPPED,
        **collaborators,
    )

    assert updated.status == OrderStatus.SHIPPED
    assert updated.shipped_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_completing_a_cod_order_confirms_the_cash(db_session, collaborators):
    order = await create_order(db_session, status=OrderStatus.DELIVERED)

    updated = await _set_status(
        db_session, order.id, OrderStatus.COMPLETED, collaborators
    )

    assert updated.payment_status == OrderPaymentStatus.COD_CONFIRMED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_completing_a_paid_order_keeps_payment_status(db_session, collaborators):
    order = await create_order(
        db_session,
        status=OrderStatus.DELIVERED,
        payment_method=PaymentMethod.CREDIT_CARD,
        payment_status=OrderPaymentStatus.PAID,
        payment_intent_ref="pi_test_1",
    )

    updated = await _set_status(
        db_session, order.id, OrderStatus.COMPLETED, collaborators
    )

    assert updated.payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_status_update_to_cancelled_follows_cancel_rules(
    db_session, collaborators
):
    confirmed = await create_order(db_session, status=OrderStatus.CONFIRMED)
    with pytest.raises(InvalidTransitionError):
        await _set_status(
            db_session,
            confirmed.id,
            OrderStatus.CANCELLED,
            collaborators,
            role=ActorRole.BUYER,
        )

    pending = await create_order(db_session)
    cancelled = await _set_status(
        db_session,
        pending.id,
        OrderStatus.CANCELLED,
        collaborators,
        role=ActorRole.BUYER,
        note="Found it cheaper",
    )
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancel_reason == CancelReason.OTHER
    assert cancelled.status_history[-1].note == "Reason: other. Found it cheaper"


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_buyer_cancels_a_pending_order(
    db_session, inventory, notifier, reconciler, collaborators
):
    order = await create_order(db_session)

    cancelled = await _cancel(
        db_session,
        order.id,
        collaborators,
        role=ActorRole.BUYER,
        actor_id=BUYER,
        reason=CancelReason.BUYER_REQUEST,
        description="Changed my mind",
    )

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert cancelled.cancelled_by == BUYER
    assert cancelled.cancel_reason == CancelReason.BUYER_REQUEST
    assert cancelled.cancel_description == "Changed my mind"
    entry = cancelled.status_history[-1]
    assert entry.status == OrderStatus.CANCELLED
    assert entry.note == "Reason: buyer_request. Changed my mind"

    (reference, lines), = inventory.restores
    assert reference == f"order-{order.order_number}-cancel"
    assert [(line.listing_id, line.quantity) for line in lines] == [("L1", 2)]
    assert notifier.events_for(SELLER) == ["order_cancelled"]
    assert reconciler.refunds == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_buyer_cannot_cancel_once_confirmed(db_session, inventory, collaborators):
    order = await create_order(db_session, status=OrderStatus.CONFIRMED)

    with pytest.raises(InvalidTransitionError):
        await _cancel(
            db_session,
            order.id,
            collaborators,
            role=ActorRole.BUYER,
            actor_id=BUYER,
            reason=CancelReason.BUYER_REQUEST,
        )
    assert inventory.restores == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_seller_cancels_a_confirmed_order(db_session, notifier, collaborators):
    order = await create_order(db_session, status=OrderStatus.CONFIRMED)

    cancelled = await _cancel(
        db_session,
        order.id,
        collaborators,
        role=ActorRole.SELLER,
        actor_id=SELLER,
        reason=CancelReason.SELLER_UNAVAILABLE,
    )

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.status_history[-1].note == "Reason: seller_unavailable."
    assert notifier.events_for(BUYER) == ["order_cancelled"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_seller_cannot_cancel_once_processing(db_session, collaborators):
    order = await create_order(db_session, status=OrderStatus.PROCESSING)

    with pytest.raises(InvalidTransitionError):
        await _cancel(
            db_session,
            order.id,
            collaborators,
            role=ActorRole.SELLER,
            actor_id=SELLER,
            reason=CancelReason.STOCK_INSUFFICIENT,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_cancel_notifies_both_parties(db_session, notifier, collaborators):
    order = await create_order(db_session, status=OrderStatus.PROCESSING)

    await _cancel(
        db_session,
        order.id,
        collaborators,
        role=ActorRole.ADMIN,
        actor_id="admin-1",
        reason=CancelReason.DELIVERY_ISSUES,
    )

    assert notifier.events_for(BUYER) == ["order_cancelled"]
    assert notifier.events_for(SELLER) == ["order_cancelled"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancelling_twice(db_session, inventory, collaborators):
    order = await create_order(db_session)
    order_id = order.id
    await _cancel(
        db_session,
        order_id,
        collaborators,
        role=ActorRole.BUYER,
        actor_id=BUYER,
        reason=CancelReason.BUYER_REQUEST,
    )

    with pytest.raises(OrderAlreadyInStatusError):
        await _cancel(
            db_session,
            order_id,
            collaborators,
            role=ActorRole.SELLER,
            actor_id=SELLER,
            reason=CancelReason.OTHER,
        )

    reloaded = await _reload(db_session, order_id)
    cancel_entries = [
        h for h in reloaded.status_history if h.status == OrderStatus.CANCELLED
    ]
    assert len(cancel_entries) == 1
    assert len(inventory.restores) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancelling_a_paid_order_raises_a_refund(
    db_session, reconciler, collaborators
):
    order = await create_order(
        db_session,
        payment_method=PaymentMethod.E_WALLET,
        payment_status=OrderPaymentStatus.PAID,
        payment_intent_ref="pi_test_7",
    )

    await _cancel(
        db_session,
        order.id,
        collaborators,
        role=ActorRole.BUYER,
        actor_id=BUYER,
        reason=CancelReason.BUYER_REQUEST,
    )

    (refund,) = reconciler.refunds
    assert refund["intent_ref"] == "pi_test_7"
    assert refund["amount"] == order.total_amount
    assert refund["reference"] == f"order-{order.order_number}"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_stock_restore_keeps_the_order(
    db_session, inventory, notifier, collaborators
):
    order = await create_order(db_session)
    order_id = order.id
    inventory.fail_restore = True

    with pytest.raises(RuntimeError):
        await _cancel(
            db_session,
            order_id,
            collaborators,
            role=ActorRole.BUYER,
            actor_id=BUYER,
            reason=CancelReason.BUYER_REQUEST,
        )

    reloaded = await _reload(db_session, order_id)
    assert reloaded.status == OrderStatus.PENDING
    assert len(reloaded.status_history) == 1
    assert notifier.sent == []


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_visibility(db_session):
    order = await create_order(db_session)

    _, role = await get_order_for_user(db_session, order_id=order.id, user_id=BUYER)
    assert role == ActorRole.BUYER
    _, role = await get_order_for_user(db_session, order_id=order.id, user_id=SELLER)
    assert role == ActorRole.SELLER
    _, role = await get_order_for_user(
        db_session, order_id=order.id, user_id="admin-1", is_admin=True
    )
    assert role == ActorRole.ADMIN

    with pytest.raises(OrderNotFoundError):
        await get_order_for_user(db_session, order_id=order.id, user_id="stranger")
    with pytest.raises(OrderNotFoundError):
        await get_order_for_user(db_session, order_id=uuid.uuid4(), user_id=BUYER)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_orders_filters_and_pages(db_session):
    for _ in range(3):
        await create_order(db_session, buyer_id=BUYER, seller_id="S1")
    await create_order(
        db_session, buyer_id=BUYER, seller_id="S2", status=OrderStatus.SHIPPED
    )
    await create_order(db_session, buyer_id="buyer-2", seller_id="S1")

    mine, total = await list_orders(db_session, buyer_id=BUYER)
    assert total == 4 and len(mine) == 4

    s1, total = await list_orders(db_session, seller_id="S1")
    assert total == 4
    assert {o.buyer_id for o in s1} == {BUYER, "buyer-2"}

    shipped, total = await list_orders(
        db_session, buyer_id=BUYER, status=OrderStatus.SHIPPED
    )
    assert total == 1 and shipped[0].seller_id == "S2"

    page_two, total = await list_orders(db_session, page=2, limit=2)
    assert total == 5 and len(page_two) == 2
