import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from services.billing_service.models import InvoiceStatus, PaymentStatus


class CheckoutResponse(BaseModel):
    success: bool = True
    message: str
    invoice_id: uuid.UUID
    payment_id: uuid.UUID
    reference: str
    invoice_status: InvoiceStatus
    total_amount: float
    currency: str
    pay_later: bool = False
    provider: Optional[str] = None
    # Paystack: hosted checkout page to redirect the payer to.
    authorization_url: Optional[str] = None
    # M-Pesa: the payer confirms on their handset.
    checkout_request_id: Optional[str] = None
    customer_message: Optional[str] = None


class VerifyPaymentResponse(BaseModel):
    message: str
    invoice_id: uuid.UUID
    reference: str
    status: PaymentStatus
    invoice_status: InvoiceStatus
    receipt_number: Optional[str] = None
    paid_at: Optional[datetime] = None


class LinkedCounts(BaseModel):
    invoices: int = 0
    swimmers: int = 0
    consents: int = 0


class LinkResponse(BaseModel):
    success: bool = True
    message: str
    linked: LinkedCounts
    conflict: bool = False