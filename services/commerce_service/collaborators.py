"""Contracts for the services checkout depends on but does not own.

The catalog (cart and listing snapshots, stock), the address book, the
payment gateway, notifications and the refund desk are reached through these
protocols. HTTP implementations live in ``clients.py`` and
``stripe_client.py``; tests plug in in-memory fakes.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from services.commerce_service.models.enums import PaymentState


@dataclass
class ListingSnapshot:
    """Live price and availability of a listing."""

    listing_id: str
    seller_id: str
    name: str
    price: Decimal
    stock: int
    is_available: bool = True
    seller_name: Optional[str] = None
    image: Optional[str] = None
    discount: Decimal = Decimal("0")  # per unit


@dataclass
class CartLine:
    listing: ListingSnapshot
    quantity: int
    variant_id: Optional[str] = None


@dataclass
class StockLine:
    listing_id: str
    quantity: int
    variant_id: Optional[str] = None


@dataclass
class GatewayIntent:
    intent_id: str
    client_secret: str
    state: PaymentState
    amount: Decimal
    currency: str
    metadata: dict = field(default_factory=dict)


class CatalogProvider(Protocol):
    async def get_cart(self, buyer_id: str) -> list[CartLine]:
        """Current cart lines with live listing data."""

    async def get_listing(
        self, listing_id: str, variant_id: Optional[str] = None
    ) -> ListingSnapshot:
        """Raise ``ListingNotFoundError`` when the listing does not exist."""

    async def remove_cart_items(
        self, buyer_id: str, listing_ids: Sequence[str]
    ) -> None:
        ...

    async def sellers_delivering_to(
        self, campus: str, seller_ids: Sequence[str]
    ) -> set[str]:
        """The subset of ``seller_ids`` that deliver to ``campus``."""


class AddressBook(Protocol):
    async def get_address(self, owner_id: str, address_id: str) -> Optional[dict]:
        """Address snapshot or None when the owner has no such address."""


class PaymentGateway(Protocol):
    async def create_intent(
        self,
        *,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict] = None,
    ) -> GatewayIntent:
        """Raise ``PaymentGatewayError`` with the gateway's reason on failure."""

    async def get_intent_status(self, intent_id: str) -> PaymentState:
        ...

    async def cancel_intent(self, intent_id: str) -> PaymentState:
        """Cancel an unpaid intent and return the state it ends in.

        An intent that already succeeded cannot be cancelled; ``SUCCEEDED`` is
        returned for it.
        """


class NotificationDispatcher(Protocol):
    async def dispatch(self, *, recipient_id: str, event: str, payload: dict) -> None:
        ...


class InventoryAdjuster(Protocol):
    async def decrement(self, lines: Sequence[StockLine], *, reference: str) -> None:
        ...

    async def restore(self, lines: Sequence[StockLine], *, reference: str) -> None:
        ...


class PaymentReconciler(Protocol):
    async def flag_refund(
        self,
        *,
        intent_ref: str,
        amount: Decimal,
        currency: str,
        reason: str,
        reference: str,
    ) -> None:
        """Record that money was captured for something that will not ship."""
