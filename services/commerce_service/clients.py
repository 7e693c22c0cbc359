"""HTTP implementations of the checkout collaborators.

All calls go through ``libs.common.service_client`` so they carry the
service JWT and the current request id.
"""

from decimal import Decimal
from typing import Optional, Sequence

from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.service_client import internal_get, internal_post, internal_put

from services.commerce_service.collaborators import CartLine, ListingSnapshot, StockLine
from services.commerce_service.errors import ListingNotFoundError

logger = get_logger(__name__)


def _listing_from_payload(data: dict) -> ListingSnapshot:
    return ListingSnapshot(
        listing_id=str(data["id"]),
        seller_id=str(data["seller_id"]),
        seller_name=data.get("seller_name"),
        name=data["name"],
        price=Decimal(str(data["price"])),
        stock=int(data.get("stock", 0)),
        is_available=bool(data.get("is_available", True)),
        image=data.get("image"),
        discount=Decimal(str(data.get("discount") or 0)),
    )


def _stock_payload(lines: Sequence[StockLine], reference: str) -> dict:
    return {
        "reference": reference,
        "items": [
            {
                "listing_id": line.listing_id,
                "variant_id": line.variant_id,
                "quantity": line.quantity,
            }
            for line in lines
        ],
    }


class CatalogServiceClient:
    """Cart, listing snapshots and stock adjustments from the catalog service."""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url or get_settings().CATALOG_SERVICE_URL

    async def get_cart(self, buyer_id: str) -> list[CartLine]:
        resp = await internal_get(
            service_url=self.base_url,
            path=f"/internal/carts/{buyer_id}",
        )
        if resp.status_code == 404:
            return []
        resp.raise_for_status()
        return [
            CartLine(
                listing=_listing_from_payload(line["listing"]),
                quantity=int(line["quantity"]),
                variant_id=line.get("variant_id"),
            )
            for line in resp.json().get("items", [])
        ]

    async def get_listing(
        self, listing_id: str, variant_id: Optional[str] = None
    ) -> ListingSnapshot:
        resp = await internal_get(
            service_url=self.base_url,
            path=f"/internal/listings/{listing_id}",
            params={"variant_id": variant_id} if variant_id else None,
        )
        if resp.status_code == 404:
            raise ListingNotFoundError(listing_id)
        resp.raise_for_status()
        return _listing_from_payload(resp.json())

    async def remove_cart_items(
        self, buyer_id: str, listing_ids: Sequence[str]
    ) -> None:
        resp = await internal_post(
            service_url=self.base_url,
            path=f"/internal/carts/{buyer_id}/remove",
            json={"listing_ids": list(listing_ids)},
        )
        resp.raise_for_status()

    async def sellers_delivering_to(
        self, campus: str, seller_ids: Sequence[str]
    ) -> set[str]:
        resp = await internal_get(
            service_url=self.base_url,
            path="/internal/sellers/campus-coverage",
            params={"campus": campus, "seller_ids": ",".join(seller_ids)},
        )
        resp.raise_for_status()
        return {str(seller_id) for seller_id in resp.json().get("seller_ids", [])}

    async def decrement(self, lines: Sequence[StockLine], *, reference: str) -> None:
        resp = await internal_post(
            service_url=self.base_url,
            path="/internal/stock/decrement",
            json=_stock_payload(lines, reference),
        )
        resp.raise_for_status()

    async def restore(self, lines: Sequence[StockLine], *, reference: str) -> None:
        resp = await internal_post(
            service_url=self.base_url,
            path="/internal/stock/restore",
            json=_stock_payload(lines, reference),
        )
        resp.raise_for_status()


class AddressBookClient:
    """Saved addresses from the members service."""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url or get_settings().MEMBERS_SERVICE_URL

    async def get_address(self, owner_id: str, address_id: str) -> Optional[dict]:
        resp = await internal_get(
            service_url=self.base_url,
            path=f"/internal/members/{owner_id}/addresses/{address_id}",
        )
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()


class NotificationClient:
    """In-app/email notifications through the communications service."""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url or get_settings().COMMUNICATIONS_SERVICE_URL

    async def dispatch(self, *, recipient_id: str, event: str, payload: dict) -> None:
        resp = await internal_post(
            service_url=self.base_url,
            path="/internal/notifications",
            json={"recipient_id": recipient_id, "event": event, "payload": payload},
        )
        resp.raise_for_status()


class RefundDeskClient:
    """Files refund obligations with the payments service."""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url or get_settings().PAYMENTS_SERVICE_URL

    async def flag_refund(
        self,
        *,
        intent_ref: str,
        amount: Decimal,
        currency: str,
        reason: str,
        reference: str,
    ) -> None:
        resp = await internal_put(
            service_url=self.base_url,
            # Keyed by reference: one obligation per order or expired checkout
            path=f"/internal/refund-obligations/{reference}",
            json={
                "intent_ref": intent_ref,
                "amount": str(amount),
                "currency": currency,
                "reason": reason,
            },
        )
        resp.raise_for_status()
        logger.warning(
            "Refund obligation %s filed for intent %s (%s %s): %s",
            reference,
            intent_ref,
            amount,
            currency,
            reason,
        )
