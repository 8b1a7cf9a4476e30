"""Billing Service schemas package."""

from services.billing_service.schemas.requests import (
    ConsentFlags,
    PayerDetails,
    PayInvoiceRequest,
    RegistrationRequest,
    SwimmerDetails,
    VerifyPaymentRequest,
)
from services.billing_service.schemas.responses import (
    CheckoutResponse,
    LinkedCounts,
    LinkResponse,
    VerifyPaymentResponse,
)

__all__ = [
    "CheckoutResponse",
    "ConsentFlags",
    "LinkResponse",
    "LinkedCounts",
    "PayInvoiceRequest",
    "PayerDetails",
    "RegistrationRequest",
    "SwimmerDetails",
    "VerifyPaymentRequest",
    "VerifyPaymentResponse",
]
