from services.commerce_service.models.checkout import CheckoutSession
from services.commerce_service.models.enums import (
    ActorRole,
    AddressType,
    CancelReason,
    DeliveryMethod,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentState,
    SessionType,
)
from services.commerce_service.models.orders import Order, OrderItem, OrderStatusHistory

__all__ = [
    "ActorRole",
    "AddressType",
    "CancelReason",
    "CheckoutSession",
    "DeliveryMethod",
    "Order",
    "OrderItem",
    "OrderPaymentStatus",
    "OrderStatus",
    "OrderStatusHistory",
    "PaymentMethod",
    "PaymentState",
    "SessionType",
]
