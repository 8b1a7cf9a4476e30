"""FastAPI application for the Billing Service."""

from fastapi import FastAPI
from libs.common.middleware import add_observability_middleware
from services.billing_service.routers import (
    payments_router,
    registrations_router,
    webhooks_router,
)


def create_app() -> FastAPI:
    """Create and configure the Billing Service FastAPI app."""
    app = FastAPI(
        title="Otters Kenya Billing Service",
        version="0.1.0",
        description="Registration billing and payment reconciliation.",
    )
    add_observability_middleware(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "billing"}

    app.include_router(registrations_router)
    app.include_router(payments_router)
    app.include_router(webhooks_router)

    return app


app = create_app()
