"""Enum definitions for commerce service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderPaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    COD_CONFIRMED = "cod_confirmed"
    COD_DECLINED = "cod_declined"


class PaymentMethod(str, enum.Enum):
    COD = "cod"
    BANK_TRANSFER = "bank_transfer"
    E_WALLET = "e_wallet"
    CREDIT_CARD = "credit_card"


class DeliveryMethod(str, enum.Enum):
    SELF_PICKUP = "self_pickup"
    DELIVERY = "delivery"
    MEETUP = "meetup"
    CAMPUS_DELIVERY = "campus_delivery"
    ROOM_DELIVERY = "room_delivery"


class AddressType(str, enum.Enum):
    PERSONAL = "personal"
    CAMPUS = "campus"
    PICKUP = "pickup"


class SessionType(str, enum.Enum):
    FROM_CART = "from_cart"
    FROM_LISTING = "from_listing"


class PaymentState(str, enum.Enum):
    """Gateway payment state as seen by checkout."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ActorRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


class CancelReason(str, enum.Enum):
    BUYER_REQUEST = "buyer_request"
    SELLER_UNAVAILABLE = "seller_unavailable"
    PAYMENT_FAILED = "payment_failed"
    STOCK_INSUFFICIENT = "stock_insufficient"
    DELIVERY_ISSUES = "delivery_issues"
    OTHER = "other"
