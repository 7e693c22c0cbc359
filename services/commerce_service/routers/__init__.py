"""Commerce service routers package."""

from services.commerce_service.routers.checkout import router as checkout_router
from services.commerce_service.routers.orders import router as orders_router

__all__ = ["checkout_router", "orders_router"]
