"""Billing Service models package."""

from services.billing_service.models.billing import (
    Invoice,
    InvoiceLineItem,
    NotificationLog,
    Payment,
    Receipt,
    ReceiptSequence,
)
from services.billing_service.models.enums import (
    InvoiceStatus,
    NotificationDisposition,
    NotificationSource,
    PaymentProvider,
    PaymentStatus,
    PayOption,
    SwimmerStatus,
)
from services.billing_service.models.registration import (
    ConsentRecord,
    ParentProfile,
    Swimmer,
)

__all__ = [
    "ConsentRecord",
    "Invoice",
    "InvoiceLineItem",
    "InvoiceStatus",
    "NotificationDisposition",
    "NotificationLog",
    "NotificationSource",
    "ParentProfile",
    "Payment",
    "PaymentProvider",
    "PaymentStatus",
    "PayOption",
    "Receipt",
    "ReceiptSequence",
    "Swimmer",
    "SwimmerStatus",
]
