"""In-memory stand-ins for the collaborators checkout talks to."""

import itertools
from decimal import Decimal
from typing import Optional, Sequence

from services.commerce_service.collaborators import (
    CartLine,
    GatewayIntent,
    ListingSnapshot,
    StockLine,
)
from services.commerce_service.errors import ListingNotFoundError, PaymentGatewayError
from services.commerce_service.models import PaymentState


class FakeCatalog:
    def __init__(self):
        self.listings: dict[str, ListingSnapshot] = {}
        self.carts: dict[str, list[tuple[str, int, Optional[str]]]] = {}
        self.removed: list[tuple[str, list[str]]] = []
        self.fail_cart_clearing = False
        # campus -> sellers delivering there; unlisted campuses are served by all
        self.campus_coverage: dict[str, set[str]] = {}

    def add_listing(self, listing: ListingSnapshot) -> ListingSnapshot:
        self.listings[listing.listing_id] = listing
        return listing

    def add_to_cart(
        self, buyer_id: str, listing_id: str, quantity: int, variant_id=None
    ) -> None:
        self.carts.setdefault(buyer_id, []).append((listing_id, quantity, variant_id))

    async def get_cart(self, buyer_id: str) -> list[CartLine]:
        return [
            CartLine(
                listing=self.listings[listing_id],
                quantity=quantity,
                variant_id=variant_id,
            )
            for listing_id, quantity, variant_id in self.carts.get(buyer_id, [])
        ]

    async def get_listing(
        self, listing_id: str, variant_id: Optional[str] = None
    ) -> ListingSnapshot:
        if listing_id not in self.listings:
            raise ListingNotFoundError(listing_id)
        return self.listings[listing_id]

    async def remove_cart_items(
        self, buyer_id: str, listing_ids: Sequence[str]
    ) -> None:
        if self.fail_cart_clearing:
            raise RuntimeError("catalog service down")
        self.removed.append((buyer_id, list(listing_ids)))

    async def sellers_delivering_to(
        self, campus: str, seller_ids: Sequence[str]
    ) -> set[str]:
        if campus not in self.campus_coverage:
            return set(seller_ids)
        return set(seller_ids) & self.campus_coverage[campus]


class FakeAddressBook:
    def __init__(self):
        self.addresses: dict[tuple[str, str], dict] = {}

    def add(self, owner_id: str, address_id: str, **address) -> None:
        self.addresses[(owner_id, address_id)] = address

    async def get_address(self, owner_id: str, address_id: str) -> Optional[dict]:
        return self.addresses.get((owner_id, address_id))


class FakeGateway:
    """Keeps intents in memory; honours idempotency keys like a real gateway."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.intents: dict[str, GatewayIntent] = {}
        self.by_key: dict[str, str] = {}
        self.create_calls = 0
        self.status_calls = 0
        self.cancelled: list[str] = []
        self.fail_with: Optional[str] = None

    async def create_intent(
        self,
        *,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict] = None,
    ) -> GatewayIntent:
        self.create_calls += 1
        if self.fail_with:
            raise PaymentGatewayError(self.fail_with, gateway_status=402)
        if idempotency_key in self.by_key:
            return self.intents[self.by_key[idempotency_key]]
        intent_id = f"pi_test_{next(self._ids)}"
        intent = GatewayIntent(
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret",
            state=PaymentState.PENDING,
            amount=amount,
            currency=currency,
            metadata=metadata or {},
        )
        self.intents[intent_id] = intent
        self.by_key[idempotency_key] = intent_id
        return intent

    async def get_intent_status(self, intent_id: str) -> PaymentState:
        self.status_calls += 1
        if self.fail_with:
            raise PaymentGatewayError(self.fail_with, gateway_status=503)
        return self.intents[intent_id].state

    async def cancel_intent(self, intent_id: str) -> PaymentState:
        intent = self.intents[intent_id]
        if intent.state != PaymentState.SUCCEEDED:
            intent.state = PaymentState.FAILED
            self.cancelled.append(intent_id)
        return intent.state

    def settle(self, intent_id: str, state: PaymentState = PaymentState.SUCCEEDED):
        self.intents[intent_id].state = state


class FakeInventory:
    def __init__(self):
        self.decrements: list[tuple[str, list[StockLine]]] = []
        self.restores: list[tuple[str, list[StockLine]]] = []
        self.fail_decrement = False
        self.fail_restore = False

    async def decrement(self, lines: Sequence[StockLine], *, reference: str) -> None:
        if self.fail_decrement:
            raise RuntimeError("stock service unavailable")
        self.decrements.append((reference, list(lines)))

    async def restore(self, lines: Sequence[StockLine], *, reference: str) -> None:
        if self.fail_restore:
            raise RuntimeError("stock service unavailable")
        self.restores.append((reference, list(lines)))


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str, dict]] = []
        self.fail = fail

    async def dispatch(self, *, recipient_id: str, event: str, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("notifications down")
        self.sent.append((recipient_id, event, payload))

    def events_for(self, recipient_id: str) -> list[str]:
        return [event for rid, event, _ in self.sent if rid == recipient_id]


class FakeReconciler:
    def __init__(self):
        self.refunds: list[dict] = []

    async def flag_refund(self, **obligation) -> None:
        self.refunds.append(obligation)
