"""Checkout session model."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import as_utc, utc_now
from libs.db.base import Base
from sqlalchemy import JSON, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Integer, Numeric, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from services.commerce_service.models.enums import (
    DeliveryMethod,
    PaymentMethod,
    PaymentState,
    SessionType,
    enum_values,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


class CheckoutSession(Base):
    """Ephemeral, buyer-owned snapshot of what is being bought.

    Rows are deleted on cancel and on materialization into orders. An expired
    row is treated as absent by every reader.
    """

    __tablename__ = "checkout_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # One active session per buyer
    buyer_id: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    session_type: Mapped[SessionType] = mapped_column(
        SAEnum(
            SessionType, values_callable=enum_values, name="checkout_session_type_enum"
        ),
        nullable=False,
    )

    # Snapshots: [{"listing_id", "seller_id", "unit_price", ...}]
    items: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    seller_groups: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    delivery_method: Mapped[Optional[DeliveryMethod]] = mapped_column(
        SAEnum(
            DeliveryMethod,
            values_callable=enum_values,
            name="checkout_delivery_method_enum",
        ),
        nullable=True,
    )
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SAEnum(
            PaymentMethod,
            values_callable=enum_values,
            name="checkout_payment_method_enum",
        ),
        nullable=True,
    )
    delivery_address: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Pricing
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    delivery_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=0
    )
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=0
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="myr")

    # Payment gateway
    payment_intent_ref: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True
    )
    payment_client_secret: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    payment_state: Mapped[Optional[PaymentState]] = mapped_column(
        SAEnum(
            PaymentState,
            values_callable=enum_values,
            name="checkout_payment_state_enum",
        ),
        nullable=True,
    )
    payment_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __mapper_args__ = {"version_id_col": version_id}

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return as_utc(self.expires_at) <= (now or utc_now())

    @property
    def pricing(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "tax": self.tax,
            "discount": self.discount,
            "total_amount": self.total_amount,
        }

    def __repr__(self):
        return f"<CheckoutSession {self.id} buyer={self.buyer_id}>"
