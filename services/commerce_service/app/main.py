"""FastAPI application for the Commerce Service."""

from fastapi import FastAPI
from libs.common.errors import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from services.commerce_service.routers import checkout_router, orders_router
from slowapi.errors import RateLimitExceeded


def create_app() -> FastAPI:
    """Create and configure the Commerce Service FastAPI app."""
    app = FastAPI(
        title="Campus Marketplace Commerce Service",
        version="0.1.0",
        description="Checkout sessions, payment intents and the order lifecycle.",
    )

    add_observability_middleware(app)
    add_exception_handlers(app)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "commerce"}

    app.include_router(checkout_router)
    app.include_router(orders_router)

    return app


app = create_app()
