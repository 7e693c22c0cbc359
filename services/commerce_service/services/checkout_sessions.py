"""Checkout session lifecycle: create, read, update, cancel, purge.

A buyer has at most one session. Reads treat an expired session as absent;
writes against one raise ``SessionExpiredError``. Sessions are deleted on
cancel and on materialization, so a missing session whose orders exist is
reported as already confirmed.
"""

import uuid
from datetime import timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from pydantic import ValidationError
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from services.commerce_service.collaborators import (
    AddressBook,
    CatalogProvider,
    ListingSnapshot,
    PaymentGateway,
    PaymentReconciler,
)
from services.commerce_service.errors import (
    ConcurrencyConflictError,
    EmptyCartError,
    InvalidDeliveryAddressError,
    SessionAlreadyConfirmedError,
    SessionExpiredError,
    SessionNotFoundError,
    SessionNotModifiableError,
    UnavailableItemError,
)
from services.commerce_service.models import (
    AddressType,
    CheckoutSession,
    DeliveryMethod,
    Order,
    PaymentState,
    SessionType,
)
from services.commerce_service.schemas import (
    DeliveryAddress,
    SellerGroup,
    SessionItem,
    SessionUpdateRequest,
)
from services.commerce_service.services.pricing import (
    ADDRESS_TYPE_FOR_METHOD,
    CAMPUS_DELIVERY_METHODS,
    DEFAULT_DELIVERY_METHOD,
    Pricing,
    build_item,
    check_payment_method,
    price_items,
)
from services.commerce_service.services.refunds import release_session_payment

logger = get_logger(__name__)


# ============================================================================
# LOADING
# ============================================================================


async def materialized_order_numbers(
    db: AsyncSession, session_id: uuid.UUID, buyer_id: str
) -> list[str]:
    """Order numbers already created from this session, if any."""
    result = await db.execute(
        select(Order.order_number)
        .where(Order.checkout_session_id == session_id, Order.buyer_id == buyer_id)
        .order_by(Order.order_number)
    )
    return list(result.scalars().all())


async def load_session(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    buyer_id: str,
    for_update: bool = False,
    allow_expired: bool = False,
) -> CheckoutSession:
    """Fetch a buyer's session or raise.

    Raises ``SessionAlreadyConfirmedError`` when the session is gone because it
    became orders, ``SessionNotFoundError`` when it never existed (or belongs
    to someone else) and ``SessionExpiredError`` unless ``allow_expired``.
    """
    query = select(CheckoutSession).where(CheckoutSession.id == session_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    session = (await db.execute(query)).scalar_one_or_none()

    if session is None or session.buyer_id != buyer_id:
        order_numbers = await materialized_order_numbers(db, session_id, buyer_id)
        if order_numbers:
            raise SessionAlreadyConfirmedError(session_id, order_numbers)
        raise SessionNotFoundError(session_id)

    if not allow_expired and session.is_expired():
        raise SessionExpiredError(session_id)
    return session


def session_items(session: CheckoutSession) -> list[SessionItem]:
    return [SessionItem.model_validate(item) for item in session.items]


def session_groups(session: CheckoutSession) -> list[SellerGroup]:
    return [SellerGroup.model_validate(group) for group in session.seller_groups]


def _apply_pricing(
    session: CheckoutSession, pricing: Pricing, groups: list[SellerGroup]
) -> None:
    session.subtotal = pricing.subtotal
    session.delivery_fee = pricing.delivery_fee
    session.tax = pricing.tax
    session.discount = pricing.discount
    session.total_amount = pricing.total_amount
    session.seller_groups = [group.model_dump(mode="json") for group in groups]


def _reprice(session: CheckoutSession) -> None:
    pricing, groups = price_items(
        session_items(session),
        session.delivery_method,
        tax_rate=get_settings().CHECKOUT_TAX_RATE,
    )
    _apply_pricing(session, pricing, groups)


async def _commit(db: AsyncSession, session_id: uuid.UUID) -> None:
    try:
        await db.commit()
    except (StaleDataError, IntegrityError) as exc:
        await db.rollback()
        logger.warning("Concurrent write on checkout session %s: %s", session_id, exc)
        raise ConcurrencyConflictError("Checkout session", session_id) from exc


# ============================================================================
# CREATE
# ============================================================================


def _check_availability(lines: list[tuple[ListingSnapshot, int]]) -> None:
    problems = []
    for listing, quantity in lines:
        if not listing.is_available:
            problems.append(
                {
                    "listing_id": listing.listing_id,
                    "name": listing.name,
                    "reason": "unavailable",
                }
            )
        elif quantity > listing.stock:
            problems.append(
                {
                    "listing_id": listing.listing_id,
                    "name": listing.name,
                    "reason": "insufficient_stock",
                    "requested": quantity,
                    "available": listing.stock,
                }
            )
    if problems:
        raise UnavailableItemError(problems)


def _item_from_listing(
    listing: ListingSnapshot, quantity: int, variant_id: Optional[str]
) -> SessionItem:
    return build_item(
        listing_id=listing.listing_id,
        seller_id=listing.seller_id,
        seller_name=listing.seller_name,
        variant_id=variant_id,
        name=listing.name,
        image=listing.image,
        quantity=quantity,
        unit_price=listing.price,
        unit_discount=listing.discount,
    )


async def _replace_active_session(
    db: AsyncSession,
    buyer_id: str,
    gateway: PaymentGateway,
    reconciler: PaymentReconciler,
) -> None:
    result = await db.execute(
        select(CheckoutSession)
        .where(CheckoutSession.buyer_id == buyer_id)
        .with_for_update()
    )
    existing = result.scalar_one_or_none()
    if existing is None:
        return

    expired = existing.is_expired()
    if existing.payment_state == PaymentState.SUCCEEDED and not expired:
        raise SessionNotModifiableError(
            "A paid checkout is waiting to be confirmed",
            details={"session_id": str(existing.id)},
        )
    await release_session_payment(existing, gateway=gateway, reconciler=reconciler)
    logger.info(
        "Replacing %s checkout session %s for buyer %s",
        "expired" if expired else "active",
        existing.id,
        buyer_id,
    )
    await db.delete(existing)
    await db.flush()


async def _open_session(
    db: AsyncSession,
    *,
    buyer_id: str,
    session_type: SessionType,
    items: list[SessionItem],
    gateway: PaymentGateway,
    reconciler: PaymentReconciler,
) -> CheckoutSession:
    settings = get_settings()
    try:
        await _replace_active_session(db, buyer_id, gateway, reconciler)
    except StaleDataError as exc:
        await db.rollback()
        raise ConcurrencyConflictError("Checkout session", buyer_id) from exc
    except Exception:
        await db.rollback()
        raise

    pricing, groups = price_items(
        items, DEFAULT_DELIVERY_METHOD, tax_rate=settings.CHECKOUT_TAX_RATE
    )
    session = CheckoutSession(
        id=uuid.uuid4(),
        buyer_id=buyer_id,
        session_type=session_type,
        items=[item.model_dump(mode="json") for item in items],
        delivery_method=DEFAULT_DELIVERY_METHOD,
        currency=settings.CHECKOUT_CURRENCY,
        expires_at=utc_now()
        + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES),
    )
    _apply_pricing(session, pricing, groups)
    db.add(session)
    await _commit(db, session.id)

    logger.info(
        "Opened %s checkout session %s for buyer %s: "
        "%d item(s), %d seller(s), total %s",
        session_type.value,
        session.id,
        buyer_id,
        len(items),
        len(groups),
        session.total_amount,
    )
    return session


async def create_from_cart(
    db: AsyncSession,
    *,
    buyer_id: str,
    catalog: CatalogProvider,
    gateway: PaymentGateway,
    reconciler: PaymentReconciler,
) -> CheckoutSession:
    """Snapshot the buyer's cart into a new session, replacing any prior one.

    The replaced session's payment intent is cancelled, or flagged for refund
    if it was paid after the session expired.
    """
    lines = [line for line in await catalog.get_cart(buyer_id) if line.quantity > 0]
    if not lines:
        raise EmptyCartError()

    _check_availability([(line.listing, line.quantity) for line in lines])
    items = [
        _item_from_listing(line.listing, line.quantity, line.variant_id)
        for line in lines
    ]
    return await _open_session(
        db,
        buyer_id=buyer_id,
        session_type=SessionType.FROM_CART,
        items=items,
        gateway=gateway,
        reconciler=reconciler,
    )


async def create_from_listing(
    db: AsyncSession,
    *,
    buyer_id: str,
    listing_id: str,
    quantity: int,
    catalog: CatalogProvider,
    gateway: PaymentGateway,
    reconciler: PaymentReconciler,
    variant_id: Optional[str] = None,
) -> CheckoutSession:
    """Single-listing "buy now" session."""
    listing = await catalog.get_listing(listing_id, variant_id)
    _check_availability([(listing, quantity)])
    return await _open_session(
        db,
        buyer_id=buyer_id,
        session_type=SessionType.FROM_LISTING,
        items=[_item_from_listing(listing, quantity, variant_id)],
        gateway=gateway,
        reconciler=reconciler,
    )


# ============================================================================
# READ / UPDATE / CANCEL
# ============================================================================


async def get_active(db: AsyncSession, *, buyer_id: str) -> Optional[CheckoutSession]:
    """The buyer's live session, or None when there is none or it expired."""
    result = await db.execute(
        select(CheckoutSession).where(CheckoutSession.buyer_id == buyer_id)
    )
    session = result.scalar_one_or_none()
    if session is None or session.is_expired():
        return None
    return session


def payment_started(session: CheckoutSession) -> bool:
    """True once an intent is claimed or live; the total is then fixed."""
    return session.payment_state in (PaymentState.PENDING, PaymentState.SUCCEEDED)


def _address_matches(address: dict, method: Optional[DeliveryMethod]) -> bool:
    if method is None:
        return True
    return address.get("type") == ADDRESS_TYPE_FOR_METHOD[method].value


async def _check_campus_coverage(
    session: CheckoutSession, catalog: CatalogProvider
) -> None:
    """Every seller in the session must deliver to the chosen campus."""
    if session.delivery_method not in CAMPUS_DELIVERY_METHODS:
        return
    address = session.delivery_address
    if not address or address.get("type") != AddressType.CAMPUS.value:
        return
    campus = address.get("campus")
    if not campus:
        raise InvalidDeliveryAddressError(
            "Campus not specified", details={"field": "campus"}
        )

    groups = session_groups(session)
    covered = await catalog.sellers_delivering_to(
        campus, [group.seller_id for group in groups]
    )
    missing = [group for group in groups if group.seller_id not in covered]
    if missing:
        names = ", ".join(group.seller_name or group.seller_id for group in missing)
        raise InvalidDeliveryAddressError(
            f"The following seller(s) do not deliver to {campus}: {names}",
            details={
                "campus": campus,
                "sellers": [
                    {"seller_id": group.seller_id, "seller_name": group.seller_name}
                    for group in missing
                ],
            },
        )


async def _resolve_address(
    patch: SessionUpdateRequest, buyer_id: str, address_book: AddressBook
) -> Optional[dict]:
    if patch.address_id:
        raw = await address_book.get_address(buyer_id, patch.address_id)
        if raw is None:
            raise InvalidDeliveryAddressError(
                "Address not found", details={"address_id": patch.address_id}
            )
        try:
            address = DeliveryAddress.model_validate(raw)
        except ValidationError as exc:
            raise InvalidDeliveryAddressError(
                "Saved address is incomplete",
                details={"address_id": patch.address_id, "errors": exc.errors()},
            ) from exc
        snapshot = address.model_dump(mode="json", exclude_none=True)
        snapshot["address_id"] = patch.address_id
        return snapshot
    if patch.delivery_address is not None:
        return patch.delivery_address.model_dump(mode="json", exclude_none=True)
    return None


async def update_session(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    buyer_id: str,
    patch: SessionUpdateRequest,
    address_book: AddressBook,
    catalog: CatalogProvider,
) -> CheckoutSession:
    """Apply a buyer's delivery/address/payment choices and reprice.

    Choosing campus or room delivery checks that every seller in the session
    delivers to the address's campus.
    """
    try:
        session = await load_session(
            db, session_id=session_id, buyer_id=buyer_id, for_update=True
        )
        if payment_started(session):
            raise SessionNotModifiableError(
                "Payment has already started for this checkout session",
                details={"session_id": str(session_id)},
            )

        delivery_changed = False
        if patch.delivery_method is not None and (
            patch.delivery_method != session.delivery_method
        ):
            delivery_changed = True
            session.delivery_method = patch.delivery_method
            if session.delivery_address and not _address_matches(
                session.delivery_address, session.delivery_method
            ):
                # The buyer has to pick an address that suits the new method
                session.delivery_address = None
            _reprice(session)

        address = await _resolve_address(patch, buyer_id, address_book)
        if address is not None:
            if not _address_matches(address, session.delivery_method):
                raise InvalidDeliveryAddressError(
                    f"A {address.get('type')} address cannot be used for "
                    f"{session.delivery_method.value}",
                    details={
                        "address_type": address.get("type"),
                        "delivery_method": session.delivery_method.value,
                    },
                )
            session.delivery_address = address
            delivery_changed = True

        if delivery_changed:
            await _check_campus_coverage(session, catalog)

        if patch.payment_method is not None:
            check_payment_method(patch.payment_method, session.total_amount)
            session.payment_method = patch.payment_method
    except Exception:
        await db.rollback()
        raise

    await _commit(db, session_id)
    logger.info(
        "Updated checkout session %s: delivery=%s payment=%s total=%s",
        session_id,
        session.delivery_method.value if session.delivery_method else None,
        session.payment_method.value if session.payment_method else None,
        session.total_amount,
    )
    return session


async def cancel_session(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    buyer_id: str,
    gateway: PaymentGateway,
    reconciler: PaymentReconciler,
) -> bool:
    """Abandon a session. Returns False when there was nothing to cancel.

    A pending payment intent is cancelled at the gateway first.
    """
    result = await db.execute(
        select(CheckoutSession)
        .where(CheckoutSession.id == session_id)
        .with_for_update()
    )
    session = result.scalar_one_or_none()
    if session is None or session.buyer_id != buyer_id:
        return False

    try:
        if session.payment_state == PaymentState.SUCCEEDED and not session.is_expired():
            raise SessionNotModifiableError(
                "This checkout has been paid; confirm it instead of cancelling",
                details={"session_id": str(session_id)},
            )
        await release_session_payment(session, gateway=gateway, reconciler=reconciler)
    except Exception:
        await db.rollback()
        raise

    await db.delete(session)
    try:
        await db.commit()
    except StaleDataError:
        # Deleted concurrently: already cancelled or confirmed
        await db.rollback()
        return False

    logger.info("Cancelled checkout session %s for buyer %s", session_id, buyer_id)
    return True


async def purge_expired_sessions(db: AsyncSession) -> int:
    """Delete expired sessions that have no live payment intent.

    Sessions with an intent are left for payment reconciliation.
    """
    result = await db.execute(
        delete(CheckoutSession)
        .where(
            CheckoutSession.expires_at <= utc_now(),
            or_(
                CheckoutSession.payment_intent_ref.is_(None),
                CheckoutSession.payment_state == PaymentState.FAILED,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    purged = result.rowcount or 0
    if purged:
        logger.info("Purged %d expired checkout session(s)", purged)
    return purged
