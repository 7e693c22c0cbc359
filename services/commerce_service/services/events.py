"""Fire-and-forget notifications about orders."""

from libs.common.logging import get_logger

from services.commerce_service.collaborators import NotificationDispatcher
from services.commerce_service.models import Order

logger = get_logger(__name__)


def order_payload(order: Order) -> dict:
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "status": order.status.value,
        "buyer_id": order.buyer_id,
        "seller_id": order.seller_id,
        "total_amount": str(order.total_amount),
        "currency": order.currency,
    }


async def notify(
    notifier: NotificationDispatcher, *, recipient_id: str, event: str, payload: dict
) -> None:
    """Dispatch a notification; delivery failures are logged, never raised."""
    try:
        await notifier.dispatch(recipient_id=recipient_id, event=event, payload=payload)
    except Exception:
        logger.warning(
            "Notification %s to %s failed", event, recipient_id, exc_info=True
        )
