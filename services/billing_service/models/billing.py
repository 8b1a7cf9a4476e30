"""Invoice, payment and receipt models."""

import random
import string
import time
import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import JSONDocument
from services.billing_service.correlation import parse_correlation
from services.billing_service.models.enums import (
    InvoiceStatus,
    NotificationDisposition,
    NotificationSource,
    PaymentProvider,
    PaymentStatus,
    enum_values,
)
from sqlalchemy import Boolean, Date, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Float, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from .registration import Swimmer


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Account id of the parent; null until the payer has an account.
    owner_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    primary_swimmer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("swimmers.id"), nullable=True
    )
    # Normalized (trimmed, lower-case); used to adopt orphaned invoices.
    payer_email: Mapped[str | None] = mapped_column(String, index=True, nullable=True)

    status: Mapped[InvoiceStatus] = mapped_column(
        SAEnum(
            InvoiceStatus,
            name="invoice_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=InvoiceStatus.DRAFT,
        nullable=False,
    )
    total_amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="KES", nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    transaction_reference: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        back_populates="invoice",
        lazy="selectin",
        order_by="InvoiceLineItem.position",
    )
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="invoice", lazy="raise"
    )
    primary_swimmer: Mapped[Optional["Swimmer"]] = relationship(
        foreign_keys=[primary_swimmer_id], lazy="raise"
    )

    @property
    def short_number(self) -> str:
        return f"INV-{self.id.hex[:8].upper()}"

    def __repr__(self):
        return f"<Invoice {self.short_number} {self.status.value}>"


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="CASCADE"), index=True, nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_amount: Mapped[float] = mapped_column(Float, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="line_items")

    @property
    def amount(self) -> float:
        return self.unit_amount * self.quantity


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id"), index=True, nullable=False
    )

    # Our reference, sent to the provider where it accepts one.
    reference: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    provider: Mapped[PaymentProvider | None] = mapped_column(
        SAEnum(
            PaymentProvider,
            name="payment_provider_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    # Handle the provider uses in its notifications (Paystack: our reference,
    # M-Pesa: CheckoutRequestID).
    provider_reference: Mapped[str | None] = mapped_column(
        String(128), unique=True, index=True, nullable=True
    )
    # Canonical provider transaction id (e.g. M-Pesa receipt number).
    transaction_reference: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )

    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="KES", nullable=False)
    channel: Mapped[str | None] = mapped_column(String(32), nullable=True)

    payer_email: Mapped[str | None] = mapped_column(String, nullable=True)
    payer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    correlation: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)

    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    initiated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    invoice: Mapped[Invoice] = relationship(back_populates="payments", lazy="raise")

    @property
    def correlation_record(self):
        return parse_correlation(self.correlation)

    @staticmethod
    def generate_reference(prefix: str, invoice_id: uuid.UUID) -> str:
        millis = int(time.time() * 1000)
        suffix = "".join(random.choices(string.digits, k=3))
        return f"{prefix}-{invoice_id.hex[:8]}-{millis}{suffix}"

    def __repr__(self):
        return f"<Payment {self.reference} {self.status.value}>"


class Receipt(Base):
    __tablename__ = "receipts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # One receipt per payment.
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payments.id"), unique=True, nullable=False
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id"), index=True, nullable=False
    )
    receipt_number: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    channel: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    payer_email: Mapped[str | None] = mapped_column(String, nullable=True)
    snapshot: Mapped[dict] = mapped_column(JSONDocument, nullable=False)

    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<Receipt {self.receipt_number}>"


class ReceiptSequence(Base):
    """Ticket table; each inserted row's id is the next receipt number."""

    __tablename__ = "receipt_sequence"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )


class NotificationLog(Base):
    """Every inbound provider notification and what was done with it."""

    __tablename__ = "payment_notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[NotificationSource] = mapped_column(
        SAEnum(
            NotificationSource,
            name="notification_source_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    provider_reference: Mapped[str | None] = mapped_column(
        String(128), index=True, nullable=True
    )
    event_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    disposition: Mapped[NotificationDisposition] = mapped_column(
        SAEnum(
            NotificationDisposition,
            name="notification_disposition_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
