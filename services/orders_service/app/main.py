"""FastAPI application for the Orders Service."""

from fastapi import FastAPI
from libs.common.logging import configure_logging
from services.orders_service.app.error_handlers import add_exception_handlers
from services.orders_service.routers import (
    fulfillment_router,
    orders_router,
    webhooks_router,
)


def create_app() -> FastAPI:
    """Create and configure the Orders Service FastAPI app."""
    configure_logging()

    app = FastAPI(
        title="Echo Orders Service",
        version="0.1.0",
        description="Order lifecycle, payments and fulfillment for chat commerce.",
    )

    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "orders"}

    app.include_router(orders_router)
    app.include_router(fulfillment_router)

    # Provider callbacks (no bearer auth; verified by HMAC signature)
    app.include_router(webhooks_router)

    return app


app = create_app()
