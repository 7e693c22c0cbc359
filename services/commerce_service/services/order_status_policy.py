"""Order status state machine and role permissions.

This is the only place transition legality and who-may-do-what are encoded.
Everything here is pure: no I/O, no session, no clock.
"""

from typing import Optional, Protocol

from services.commerce_service.models.enums import ActorRole, OrderStatus

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.CANCELLED}
    ),
    OrderStatus.CONFIRMED: frozenset(
        {
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.COMPLETED,
            OrderStatus.CANCELLED,
        }
    ),
    OrderStatus.PROCESSING: frozenset(
        {
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.COMPLETED,
            OrderStatus.CANCELLED,
        }
    ),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)

INITIAL_STATUS = OrderStatus.PENDING

# Statuses each role may cancel from
CANCELLABLE_BY: dict[ActorRole, frozenset[OrderStatus]] = {
    ActorRole.BUYER: frozenset({OrderStatus.PENDING}),
    ActorRole.SELLER: frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED}),
    ActorRole.ADMIN: frozenset(
        status
        for status, targets in TRANSITIONS.items()
        if OrderStatus.CANCELLED in targets
    ),
}

# Timestamp column stamped on entry into a status
STATUS_TIMESTAMP_FIELDS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


class HasStatus(Protocol):
    status: OrderStatus


class HasParties(HasStatus, Protocol):
    buyer_id: str
    seller_id: str


def next_statuses(current: OrderStatus) -> frozenset[OrderStatus]:
    return TRANSITIONS[OrderStatus(current)]


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in next_statuses(current)


def can_cancel(order: HasStatus, actor_role: ActorRole) -> bool:
    """Buyer: pending only. Seller: pending or confirmed. Never from terminal."""
    if is_terminal(order.status):
        return False
    return OrderStatus(order.status) in CANCELLABLE_BY.get(
        ActorRole(actor_role), frozenset()
    )


def can_advance_status(order: HasStatus, actor_role: ActorRole) -> bool:
    """Seller, or admin as an override, on a non-terminal order."""
    if is_terminal(order.status):
        return False
    return ActorRole(actor_role) in (ActorRole.SELLER, ActorRole.ADMIN)


def resolve_actor_role(
    order: HasParties, user_id: str, *, is_admin: bool = False
) -> Optional[ActorRole]:
    """Which role ``user_id`` plays on this order, or None for outsiders.

    A party to the order acts as that party even if they are also an admin.
    """
    if user_id == order.seller_id:
        return ActorRole.SELLER
    if user_id == order.buyer_id:
        return ActorRole.BUYER
    if is_admin:
        return ActorRole.ADMIN
    return None
