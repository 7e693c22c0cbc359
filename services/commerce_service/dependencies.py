"""FastAPI providers for the checkout collaborators.

Routers depend on these so tests (and other deployments) can swap them via
``app.dependency_overrides``.
"""

from services.commerce_service.clients import (
    AddressBookClient,
    CatalogServiceClient,
    NotificationClient,
    RefundDeskClient,
)
from services.commerce_service.collaborators import (
    AddressBook,
    CatalogProvider,
    InventoryAdjuster,
    NotificationDispatcher,
    PaymentGateway,
    PaymentReconciler,
)
from services.commerce_service.stripe_client import get_stripe_client


def get_catalog() -> CatalogProvider:
    return CatalogServiceClient()


def get_inventory() -> InventoryAdjuster:
    return CatalogServiceClient()


def get_address_book() -> AddressBook:
    return AddressBookClient()


def get_payment_gateway() -> PaymentGateway:
    return get_stripe_client()


def get_notifier() -> NotificationDispatcher:
    return NotificationClient()


def get_reconciler() -> PaymentReconciler:
    return RefundDeskClient()
