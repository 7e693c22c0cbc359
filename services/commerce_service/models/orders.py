"""Order models: orders, their item snapshots and status timeline."""

import random
import string
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import JSON, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import (
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.commerce_service.models.enums import (
    CancelReason,
    DeliveryMethod,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    enum_values,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Order(Base):
    """One seller's share of a confirmed checkout."""

    __tablename__ = "orders"
    __table_args__ = (
        # A checkout session materializes at most once per seller
        UniqueConstraint(
            "checkout_session_id", "seller_id", name="uq_orders_session_seller"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )
    checkout_session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, index=True, nullable=False
    )

    # Parties
    buyer_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    seller_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    seller_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(OrderStatus, values_callable=enum_values, name="order_status_enum"),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_status: Mapped[OrderPaymentStatus] = mapped_column(
        SAEnum(
            OrderPaymentStatus,
            values_callable=enum_values,
            name="order_payment_status_enum",
        ),
        default=OrderPaymentStatus.PENDING,
        nullable=False,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(
            PaymentMethod, values_callable=enum_values, name="order_payment_method_enum"
        ),
        nullable=False,
    )
    payment_intent_ref: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True
    )
    delivery_method: Mapped[DeliveryMethod] = mapped_column(
        SAEnum(
            DeliveryMethod,
            values_callable=enum_values,
            name="order_delivery_method_enum",
        ),
        nullable=False,
    )
    delivery_address: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Amounts fixed at materialization
    items_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=0
    )
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_discount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=0
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="myr")

    # Cancellation
    cancel_reason: Mapped[Optional[CancelReason]] = mapped_column(
        SAEnum(
            CancelReason, values_callable=enum_values, name="order_cancel_reason_enum"
        ),
        nullable=True,
    )
    cancel_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Status timestamps
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @staticmethod
    def generate_order_number() -> str:
        """Generate order number like ORD-20260115-4K7Q2Z."""
        date_part = utc_now().strftime("%Y%m%d")
        suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
        return f"ORD-{date_part}-{suffix}"

    def __repr__(self):
        return f"<Order {self.order_number} {self.status.value}>"


class OrderItem(Base):
    """Immutable snapshot of a purchased line."""

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    listing_id: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_discount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=0
    )
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    """Append-only status timeline entry."""

    __tablename__ = "order_status_history"
    __table_args__ = (
        UniqueConstraint("order_id", "position", name="uq_order_history_position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus, values_callable=enum_values, name="order_history_status_enum"
        ),
        nullable=False,
    )
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")
