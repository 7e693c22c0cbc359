"""Checkout pricing.

Amounts are computed per seller group and summed, so the session total is
always exactly the sum of the orders it becomes:

- subtotal: sum of ``unit_price * quantity``
- discount: sum of the per-unit catalog discount snapshotted with each item
- tax: ``CHECKOUT_TAX_RATE * (subtotal - discount)`` per group
- delivery fee: charged once per session by delivery method, then split
  across seller groups in proportion to their subtotals (largest remainder,
  ties to the earlier group).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from libs.common.config import get_settings
from libs.common.currency import from_cents, to_cents, to_money

from services.commerce_service.errors import PaymentMethodNotAllowedError
from services.commerce_service.models.enums import (
    AddressType,
    DeliveryMethod,
    PaymentMethod,
)
from services.commerce_service.schemas import SellerGroup, SessionItem

ZERO = Decimal("0.00")

DELIVERY_FEES: dict[DeliveryMethod, Decimal] = {
    DeliveryMethod.DELIVERY: Decimal("5.00"),
    DeliveryMethod.CAMPUS_DELIVERY: Decimal("2.50"),
    DeliveryMethod.ROOM_DELIVERY: Decimal("2.50"),
    DeliveryMethod.SELF_PICKUP: Decimal("1.00"),
    DeliveryMethod.MEETUP: Decimal("1.00"),
}

# Address type a delivery method must be sent to
ADDRESS_TYPE_FOR_METHOD: dict[DeliveryMethod, AddressType] = {
    DeliveryMethod.DELIVERY: AddressType.PERSONAL,
    DeliveryMethod.CAMPUS_DELIVERY: AddressType.CAMPUS,
    DeliveryMethod.ROOM_DELIVERY: AddressType.CAMPUS,
    DeliveryMethod.SELF_PICKUP: AddressType.PICKUP,
    DeliveryMethod.MEETUP: AddressType.PICKUP,
}

# Sellers must cover the buyer's campus for these
CAMPUS_DELIVERY_METHODS = frozenset(
    {DeliveryMethod.CAMPUS_DELIVERY, DeliveryMethod.ROOM_DELIVERY}
)

DEFAULT_DELIVERY_METHOD = DeliveryMethod.DELIVERY


@dataclass(frozen=True)
class Pricing:
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    discount: Decimal
    total_amount: Decimal


def delivery_fee_for(method: Optional[DeliveryMethod]) -> Decimal:
    if method is None:
        return ZERO
    return DELIVERY_FEES[DeliveryMethod(method)]


def allocate(amount: Decimal, weights: Sequence[Decimal]) -> list[Decimal]:
    """Split ``amount`` across ``weights`` to the cent; shares sum to ``amount``."""
    if not weights:
        return []
    cents = to_cents(amount)
    weight_cents = [to_cents(w) for w in weights]
    total_weight = sum(weight_cents)
    if total_weight <= 0:
        # Nothing to weigh by: the first group carries it all
        return [from_cents(cents)] + [ZERO] * (len(weights) - 1)

    shares = []
    remainders = []
    for index, weight in enumerate(weight_cents):
        share, remainder = divmod(cents * weight, total_weight)
        shares.append(share)
        remainders.append((-remainder, index))

    leftover = cents - sum(shares)
    for _, index in sorted(remainders)[:leftover]:
        shares[index] += 1
    return [from_cents(share) for share in shares]


def build_item(
    *,
    listing_id: str,
    seller_id: str,
    name: str,
    quantity: int,
    unit_price: Decimal,
    unit_discount: Decimal = ZERO,
    seller_name: Optional[str] = None,
    variant_id: Optional[str] = None,
    image: Optional[str] = None,
) -> SessionItem:
    unit_price = to_money(unit_price)
    return SessionItem(
        listing_id=listing_id,
        seller_id=seller_id,
        seller_name=seller_name,
        variant_id=variant_id,
        name=name,
        image=image,
        quantity=quantity,
        unit_price=unit_price,
        unit_discount=min(to_money(unit_discount), unit_price),
        line_total=to_money(unit_price * quantity),
    )


def group_by_seller(
    items: Iterable[SessionItem],
) -> list[tuple[str, list[SessionItem]]]:
    """Group items by seller, keeping first-appearance order."""
    groups: dict[str, list[SessionItem]] = {}
    for item in items:
        groups.setdefault(item.seller_id, []).append(item)
    return list(groups.items())


def price_items(
    items: Sequence[SessionItem],
    delivery_method: Optional[DeliveryMethod],
    *,
    tax_rate: Decimal = ZERO,
) -> tuple[Pricing, list[SellerGroup]]:
    """Price a set of item snapshots and derive the seller groups."""
    grouped = group_by_seller(items)
    subtotals = [sum((i.line_total for i in lines), ZERO) for _, lines in grouped]
    fee_shares = allocate(delivery_fee_for(delivery_method), subtotals)

    seller_groups = []
    for (seller_id, lines), subtotal, fee in zip(grouped, subtotals, fee_shares):
        discount = to_money(sum((i.unit_discount * i.quantity for i in lines), ZERO))
        tax = to_money((subtotal - discount) * tax_rate)
        seller_groups.append(
            SellerGroup(
                seller_id=seller_id,
                seller_name=lines[0].seller_name,
                items=list(lines),
                subtotal=to_money(subtotal),
                delivery_fee=fee,
                tax=tax,
                discount=discount,
                total_amount=to_money(subtotal + fee + tax - discount),
            )
        )

    pricing = Pricing(
        subtotal=to_money(sum((g.subtotal for g in seller_groups), ZERO)),
        delivery_fee=to_money(sum((g.delivery_fee for g in seller_groups), ZERO)),
        tax=to_money(sum((g.tax for g in seller_groups), ZERO)),
        discount=to_money(sum((g.discount for g in seller_groups), ZERO)),
        total_amount=to_money(sum((g.total_amount for g in seller_groups), ZERO)),
    )
    return pricing, seller_groups


# ============================================================================
# PAYMENT METHOD RULES
# ============================================================================

GATEWAY_METHODS = frozenset(
    {PaymentMethod.CREDIT_CARD, PaymentMethod.E_WALLET, PaymentMethod.BANK_TRANSFER}
)


def check_payment_method(method: PaymentMethod, total_amount: Decimal) -> None:
    """Raise ``PaymentMethodNotAllowedError`` if ``method`` can't pay ``total_amount``.

    COD is capped by ``COD_MAX_AMOUNT`` on the whole checkout total; gateway
    methods need at least ``ONLINE_PAYMENT_MIN_AMOUNT``.
    """
    settings = get_settings()
    method = PaymentMethod(method)
    total_amount = to_money(total_amount)
    if method == PaymentMethod.COD:
        if total_amount > settings.COD_MAX_AMOUNT:
            raise PaymentMethodNotAllowedError(
                f"Cash on delivery is only available for totals up to "
                f"{to_money(settings.COD_MAX_AMOUNT)}",
                details={
                    "payment_method": method.value,
                    "total_amount": str(total_amount),
                    "limit": str(settings.COD_MAX_AMOUNT),
                },
            )
    elif total_amount < settings.ONLINE_PAYMENT_MIN_AMOUNT:
        raise PaymentMethodNotAllowedError(
            f"Online payment requires a total of at least "
            f"{to_money(settings.ONLINE_PAYMENT_MIN_AMOUNT)}",
            details={
                "payment_method": method.value,
                "total_amount": str(total_amount),
                "minimum": str(settings.ONLINE_PAYMENT_MIN_AMOUNT),
            },
        )
