"""Enum definitions for billing service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"  # pay-now submission awaiting the provider
    ISSUED = "issued"  # pay-later submission
    DUE = "due"
    PAID = "paid"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentProvider(str, enum.Enum):
    PAYSTACK = "paystack"
    MPESA = "mpesa"


class PayOption(str, enum.Enum):
    PAY_NOW = "pay_now"
    PAY_LATER = "pay_later"


class SwimmerStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    INACTIVE = "inactive"


class NotificationSource(str, enum.Enum):
    WEBHOOK = "webhook"
    VERIFY = "verify"
    SWEEPER = "sweeper"


class NotificationDisposition(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_RECONCILED = "already_reconciled"
    FAILURE_RECORDED = "failure_recorded"
    AMOUNT_MISMATCH = "amount_mismatch"
    UNKNOWN_REFERENCE = "unknown_reference"
    MALFORMED = "malformed"
    IGNORED = "ignored"
    ERROR = "error"
