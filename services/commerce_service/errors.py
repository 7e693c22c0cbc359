"""Domain errors raised by the checkout and order services.

Each error renders as ``{"detail", "code", "details"}`` through
``libs.common.errors.add_exception_handlers``.
"""

from typing import Any, Optional

from fastapi import status

from libs.common.errors import ServiceError


class CommerceError(ServiceError):
    code = "COMMERCE_ERROR"


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------


class EmptyCartError(CommerceError):
    code = "EMPTY_CART"

    def __init__(self, message: str = "Cart has no items to check out"):
        super().__init__(message)


class UnavailableItemError(CommerceError):
    """One or more listings can no longer be bought in the requested quantity."""

    status_code = status.HTTP_409_CONFLICT
    code = "ITEM_UNAVAILABLE"

    def __init__(self, problems: list[dict[str, Any]]):
        self.problems = problems
        names = ", ".join(p.get("name") or p["listing_id"] for p in problems)
        super().__init__(
            f"Some items are unavailable: {names}", details={"items": problems}
        )


class ListingNotFoundError(CommerceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "LISTING_NOT_FOUND"

    def __init__(self, listing_id: str):
        self.listing_id = listing_id
        super().__init__(
            f"Listing {listing_id} not found", details={"listing_id": listing_id}
        )


class InvalidTransitionError(CommerceError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATUS_TRANSITION"

    def __init__(
        self,
        message: str,
        *,
        current: Optional[str] = None,
        requested: Optional[str] = None,
        allowed: Optional[list[str]] = None,
    ):
        super().__init__(
            message,
            details={
                "current_status": current,
                "requested_status": requested,
                "allowed_statuses": allowed or [],
            },
        )


class OrderAlreadyInStatusError(InvalidTransitionError):
    code = "ORDER_ALREADY_IN_STATUS"


class OrderPermissionError(InvalidTransitionError):
    """The actor's role may not perform this change on the order."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "ORDER_ACTION_FORBIDDEN"


class SessionExpiredError(CommerceError):
    status_code = status.HTTP_410_GONE
    code = "SESSION_EXPIRED"

    def __init__(self, session_id: Any):
        super().__init__(
            "Checkout session has expired, please restart checkout from your cart",
            details={"session_id": str(session_id)},
        )


class SessionAlreadyConfirmedError(CommerceError):
    status_code = status.HTTP_409_CONFLICT
    code = "SESSION_ALREADY_CONFIRMED"

    def __init__(self, session_id: Any, order_numbers: Optional[list[str]] = None):
        super().__init__(
            "Checkout session has already been confirmed",
            details={
                "session_id": str(session_id),
                "order_numbers": order_numbers or [],
            },
        )


class SessionNotModifiableError(CommerceError):
    status_code = status.HTTP_409_CONFLICT
    code = "SESSION_NOT_MODIFIABLE"


class CheckoutIncompleteError(CommerceError):
    code = "CHECKOUT_INCOMPLETE"

    def __init__(self, missing: list[str]):
        super().__init__(
            f"Checkout is missing: {', '.join(missing)}", details={"missing": missing}
        )


class InvalidDeliveryAddressError(CommerceError):
    code = "INVALID_DELIVERY_ADDRESS"


class PaymentMethodNotAllowedError(CommerceError):
    code = "PAYMENT_METHOD_NOT_ALLOWED"


class PaymentNotCompletedError(CommerceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "PAYMENT_NOT_COMPLETED"


# ---------------------------------------------------------------------------
# Lookup errors
# ---------------------------------------------------------------------------


class SessionNotFoundError(CommerceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: Any):
        super().__init__(
            "Checkout session not found", details={"session_id": str(session_id)}
        )


class OrderNotFoundError(CommerceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: Any):
        super().__init__("Order not found", details={"order_id": str(order_id)})


# ---------------------------------------------------------------------------
# External dependency and concurrency errors
# ---------------------------------------------------------------------------


class PaymentGatewayError(CommerceError):
    """The payment gateway rejected or failed a call. ``reason`` is the gateway's."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "PAYMENT_GATEWAY_ERROR"

    def __init__(
        self,
        reason: str,
        *,
        gateway_status: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        self.reason = reason
        self.gateway_status = gateway_status
        self.response_data = response_data or {}
        super().__init__(
            f"Payment gateway error: {reason}",
            details={"reason": reason, "gateway_status": gateway_status},
        )


class ConcurrencyConflictError(CommerceError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONCURRENT_MODIFICATION"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} was modified by another request, please retry",
            details={"entity": entity, "id": str(entity_id)},
        )
