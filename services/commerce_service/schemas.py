"""Pydantic schemas for checkout sessions and orders.

JSON bodies use camelCase (``sessionType``, ``sellerGroups``, ``totalAmount``);
attributes stay snake_case.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from services.commerce_service.models.enums import (
    AddressType,
    CancelReason,
    DeliveryMethod,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentState,
    SessionType,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# ============================================================================
# SNAPSHOTS (stored as JSON on the session)
# ============================================================================


class SessionItem(CamelModel):
    listing_id: str
    seller_id: str
    seller_name: Optional[str] = None
    variant_id: Optional[str] = None
    name: str
    image: Optional[str] = None
    quantity: int
    unit_price: Decimal
    unit_discount: Decimal = Decimal("0")
    line_total: Decimal


class SellerGroup(CamelModel):
    seller_id: str
    seller_name: Optional[str] = None
    items: list[SessionItem]
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    discount: Decimal
    total_amount: Decimal


class PricingOut(CamelModel):
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    discount: Decimal
    total_amount: Decimal


class DeliveryAddress(CamelModel):
    """Address snapshot copied into a session; unknown keys are kept."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    type: AddressType
    recipient_name: Optional[str] = None
    phone: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    campus: Optional[str] = None
    building: Optional[str] = None
    room: Optional[str] = None
    pickup_point: Optional[str] = None


# ============================================================================
# CHECKOUT SESSION
# ============================================================================


class CreateListingSessionRequest(CamelModel):
    listing_id: str
    quantity: int = Field(1, ge=1, le=100)
    variant_id: Optional[str] = None


class SessionUpdateRequest(CamelModel):
    """Only fields present in the request body are applied."""

    delivery_method: Optional[DeliveryMethod] = None
    payment_method: Optional[PaymentMethod] = None
    address_id: Optional[str] = None
    delivery_address: Optional[DeliveryAddress] = None


class CheckoutSessionResponse(CamelModel):
    id: uuid.UUID
    buyer_id: str
    session_type: SessionType
    items: list[SessionItem]
    seller_groups: list[SellerGroup]
    delivery_method: Optional[DeliveryMethod] = None
    payment_method: Optional[PaymentMethod] = None
    delivery_address: Optional[dict] = None
    pricing: PricingOut
    currency: str
    payment_intent_ref: Optional[str] = None
    payment_state: Optional[PaymentState] = None
    expires_at: datetime
    created_at: datetime


class PaymentIntentResponse(CamelModel):
    intent_id: str
    client_secret: str
    amount: Decimal
    currency: str
    reused: bool = False


class PaymentStatusResponse(CamelModel):
    session_id: uuid.UUID
    status: PaymentState
    intent_id: Optional[str] = None


# ============================================================================
# ORDERS
# ============================================================================


class OrderItemResponse(CamelModel):
    listing_id: str
    variant_id: Optional[str] = None
    name: str
    image: Optional[str] = None
    quantity: int
    unit_price: Decimal
    unit_discount: Decimal
    line_total: Decimal


class StatusHistoryEntry(CamelModel):
    status: OrderStatus
    note: Optional[str] = None
    changed_by: Optional[str] = None
    changed_at: datetime


class OrderResponse(CamelModel):
    id: uuid.UUID
    order_number: str
    checkout_session_id: uuid.UUID
    buyer_id: str
    seller_id: str
    seller_name: Optional[str] = None
    items: list[OrderItemResponse]
    status: OrderStatus
    payment_status: OrderPaymentStatus
    payment_method: PaymentMethod
    delivery_method: DeliveryMethod
    delivery_address: Optional[dict] = None
    items_total: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total_discount: Decimal
    total_amount: Decimal
    currency: str
    status_history: list[StatusHistoryEntry]
    cancel_reason: Optional[CancelReason] = None
    cancel_description: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class OrderListResponse(CamelModel):
    orders: list[OrderResponse]
    total: int
    page: int
    limit: int


class OrderStatusUpdateRequest(CamelModel):
    status: OrderStatus
    note: Optional[str] = Field(None, max_length=500)


class OrderCancelRequest(CamelModel):
    reason: CancelReason
    description: Optional[str] = Field(None, max_length=500)
