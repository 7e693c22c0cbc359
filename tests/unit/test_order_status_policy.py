"""Unit tests for the order status state machine and role rules."""

from types import SimpleNamespace

import pytest
from services.commerce_service.models import ActorRole, OrderStatus
from services.commerce_service.services.order_status_policy import (
    TERMINAL_STATUSES,
    can_advance_status,
    can_cancel,
    can_transition,
    is_terminal,
    next_statuses,
    resolve_actor_role,
)

S = OrderStatus


def _order(status, buyer_id="buyer-1", seller_id="seller-1"):
    return SimpleNamespace(status=status, buyer_id=buyer_id, seller_id=seller_id)


@pytest.mark.unit
@pytest.mark.parametrize(
    "current, expected",
    [
        (S.PENDING, {S.CONFIRMED, S.PROCESSING, S.CANCELLED}),
        (S.CONFIRMED, {S.PROCESSING, S.SHIPPED, S.COMPLETED, S.CANCELLED}),
        (S.PROCESSING, {S.SHIPPED, S.DELIVERED, S.COMPLETED, S.CANCELLED}),
        (S.SHIPPED, {S.DELIVERED, S.COMPLETED}),
        (S.DELIVERED, {S.COMPLETED}),
        (S.COMPLETED, set()),
        (S.CANCELLED, set()),
        (S.REFUNDED, set()),
    ],
)
def test_next_statuses_table(current, expected):
    assert next_statuses(current) == expected


@pytest.mark.unit
def test_terminal_statuses():
    assert TERMINAL_STATUSES == {S.COMPLETED, S.CANCELLED, S.REFUNDED}
    assert is_terminal("completed")
    assert not is_terminal(S.SHIPPED)


@pytest.mark.unit
def test_pending_is_never_a_target():
    """Nothing moves back to pending."""
    assert all(S.PENDING not in next_statuses(status) for status in S)


@pytest.mark.unit
def test_can_transition_accepts_plain_strings():
    assert can_transition("shipped", "completed")
    assert not can_transition("shipped", "pending")


@pytest.mark.unit
@pytest.mark.parametrize(
    "status, role, allowed",
    [
        (S.PENDING, ActorRole.BUYER, True),
        (S.CONFIRMED, ActorRole.BUYER, False),
        (S.PROCESSING, ActorRole.BUYER, False),
        (S.PENDING, ActorRole.SELLER, True),
        (S.CONFIRMED, ActorRole.SELLER, True),
        (S.PROCESSING, ActorRole.SELLER, False),
        (S.SHIPPED, ActorRole.SELLER, False),
        (S.PROCESSING, ActorRole.ADMIN, True),
        (S.SHIPPED, ActorRole.ADMIN, False),
    ],
)
def test_can_cancel(status, role, allowed):
    assert can_cancel(_order(status), role) is allowed


@pytest.mark.unit
@pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED, S.REFUNDED])
@pytest.mark.parametrize("role", list(ActorRole))
def test_nobody_cancels_or_advances_terminal_orders(status, role):
    order = _order(status)
    assert can_cancel(order, role) is False
    assert can_advance_status(order, role) is False


@pytest.mark.unit
def test_only_seller_or_admin_advance_status():
    order = _order(S.CONFIRMED)
    assert can_advance_status(order, ActorRole.SELLER)
    assert can_advance_status(order, ActorRole.ADMIN)
    assert not can_advance_status(order, ActorRole.BUYER)


@pytest.mark.unit
def test_resolve_actor_role():
    order = _order(S.PENDING)
    assert resolve_actor_role(order, "seller-1") == ActorRole.SELLER
    assert resolve_actor_role(order, "buyer-1") == ActorRole.BUYER
    assert resolve_actor_role(order, "someone-else") is None
    assert resolve_actor_role(order, "someone-else", is_admin=True) == ActorRole.ADMIN
    # A party keeps their party role even with admin rights
    assert resolve_actor_role(order, "buyer-1", is_admin=True) == ActorRole.BUYER
