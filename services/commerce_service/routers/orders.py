"""Orders router: order history, status updates and cancellation."""

import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import get_current_user, require_admin
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.commerce_service.collaborators import (
    InventoryAdjuster,
    NotificationDispatcher,
    PaymentReconciler,
)
from services.commerce_service.dependencies import (
    get_inventory,
    get_notifier,
    get_reconciler,
)
from services.commerce_service.models import OrderStatus
from services.commerce_service.schemas import (
    OrderCancelRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdateRequest,
)
from services.commerce_service.services import order_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    role: Literal["buyer", "seller"] = Query("buyer"),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Orders the caller placed (``role=buyer``) or received (``role=seller``)."""
    party = {f"{role}_id": current_user.user_id}
    orders, total = await order_ops.list_orders(
        db, status=order_status, page=page, limit=limit, **party
    )
    return OrderListResponse(orders=orders, total=total, page=page, limit=limit)


@router.get("/admin", response_model=OrderListResponse)
async def list_all_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    orders, total = await order_ops.list_orders(
        db, status=order_status, page=page, limit=limit
    )
    return OrderListResponse(orders=orders, total=total, page=page, limit=limit)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    order, _ = await order_ops.get_order_for_user(
        db,
        order_id=order_id,
        user_id=current_user.user_id,
        is_admin=current_user.is_admin,
    )
    return order


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    payload: OrderStatusUpdateRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
    inventory: InventoryAdjuster = Depends(get_inventory),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Advance an order (seller or admin)."""
    _, role = await order_ops.get_order_for_user(
        db,
        order_id=order_id,
        user_id=current_user.user_id,
        is_admin=current_user.is_admin,
    )
    return await order_ops.update_order_status(
        db,
        order_id=order_id,
        actor_id=current_user.user_id,
        actor_role=role,
        new_status=payload.status,
        note=payload.note,
        notifier=notifier,
        inventory=inventory,
        reconciler=reconciler,
    )


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    payload: OrderCancelRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
    inventory: InventoryAdjuster = Depends(get_inventory),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    _, role = await order_ops.get_order_for_user(
        db,
        order_id=order_id,
        user_id=current_user.user_id,
        is_admin=current_user.is_admin,
    )
    return await order_ops.cancel_order(
        db,
        order_id=order_id,
        actor_id=current_user.user_id,
        actor_role=role,
        reason=payload.reason,
        description=payload.description,
        notifier=notifier,
        inventory=inventory,
        reconciler=reconciler,
    )
