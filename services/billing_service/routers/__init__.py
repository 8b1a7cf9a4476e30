"""Routers package."""

from services.billing_service.routers.payments import router as payments_router
from services.billing_service.routers.registrations import (
    router as registrations_router,
)
from services.billing_service.routers.webhooks import router as webhooks_router

__all__ = [
    "payments_router",
    "registrations_router",
    "webhooks_router",
]
