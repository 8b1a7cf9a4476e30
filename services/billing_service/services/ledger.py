"""Payment ledger: the only code that moves payments and invoices between states.

Every provider notification (webhook, M-Pesa callback, post-redirect
verify, stale-payment sweep) ends in ``reconcile``. Correctness under
duplicate and concurrent notifications comes from the conditional
``pending -> completed`` update: exactly one caller sees a changed row and
only that caller marks the invoice paid, approves swimmers and issues the
receipt.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional
from urllib.parse import urlencode

from libs.common.config import Settings, get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.billing_service.correlation import (
    DeferredCorrelation,
    dump_correlation,
    with_provider,
)
from services.billing_service.exceptions import (
    AlreadyReconciled,
    AmountMismatch,
    InvalidRegistration,
    InvoiceAlreadyPaid,
    PaymentNotFound,
    ProviderUnavailable,
)
from services.billing_service.models import (
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    NotificationDisposition,
    Payment,
    PaymentStatus,
    PayOption,
    Receipt,
)
from services.billing_service.models.enums import PaymentProvider as ProviderName
from services.billing_service.providers.base import (
    PaymentIntent,
    PaymentProvider,
    PendingCharge,
    ProviderOutcome,
)
from services.billing_service.services import receipts, resolver
from services.billing_service.services.notifier import ReceiptNotifier
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

REGISTRATION_PREFIX = "REG"
INVOICE_PAYMENT_PREFIX = "INV"


@dataclass
class LineItemDraft:
    description: str
    unit_amount: float
    quantity: int = 1


@dataclass
class OpenedInvoice:
    invoice: Invoice
    payment: Payment
    charge: Optional[PendingCharge] = None


@dataclass
class ReconcileResult:
    disposition: NotificationDisposition
    payment: Payment
    invoice: Optional[Invoice] = None
    approved_swimmer_ids: list[uuid.UUID] = field(default_factory=list)
    receipt: Optional[Receipt] = None

    @property
    def already_reconciled(self) -> bool:
        return self.disposition == NotificationDisposition.ALREADY_RECONCILED


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    return email.strip().lower() or None


def compute_total(line_items: list[LineItemDraft]) -> float:
    if not line_items:
        raise InvalidRegistration("An invoice needs at least one line item")
    for item in line_items:
        if item.unit_amount <= 0 or item.quantity < 1:
            raise InvalidRegistration(f"Invalid line item: {item.description}")
    return round(sum(item.unit_amount * item.quantity for item in line_items), 2)


def _callback_url(settings: Settings, path: str, params: dict) -> str:
    base = (
        settings.PAYSTACK_CALLBACK_URL
        or f"{settings.FRONTEND_URL.rstrip('/')}{path}"
    )
    return f"{base}?{urlencode(params)}"


async def _initiate(
    provider: PaymentProvider,
    *,
    invoice: Invoice,
    payment: Payment,
    description: str,
    callback_url: str,
    metadata: Optional[dict],
) -> PendingCharge:
    intent = PaymentIntent(
        reference=payment.reference,
        amount=payment.amount,
        currency=payment.currency,
        email=payment.payer_email,
        phone_number=payment.payer_phone,
        description=description,
        callback_url=callback_url,
        metadata={
            "invoice_id": str(invoice.id),
            "payment_id": str(payment.id),
            "account_reference": f"{REGISTRATION_PREFIX}-{invoice.id.hex[:8]}",
            **(metadata or {}),
        },
    )
    return await provider.initiate(intent)


def _attach_charge(
    invoice: Invoice, payment: Payment, provider: PaymentProvider, charge: PendingCharge
) -> None:
    payment.provider = ProviderName(provider.name)
    payment.provider_reference = charge.provider_reference
    payment.initiated_at = utc_now()
    payment.correlation = dump_correlation(
        with_provider(payment.correlation_record, provider.name, **charge.handles)
    )
    invoice.payment_method = provider.name


async def _initiate_or_rollback(
    db: AsyncSession,
    provider: PaymentProvider,
    invoice: Invoice,
    payment: Payment,
    **kwargs,
) -> PendingCharge:
    reference = payment.reference
    try:
        return await _initiate(provider, invoice=invoice, payment=payment, **kwargs)
    except ProviderUnavailable as e:
        await db.rollback()
        logger.error(
            "Payment initiation failed, nothing persisted",
            extra={
                "extra_fields": {
                    "provider": provider.name,
                    "reference": reference,
                    "error": str(e),
                }
            },
        )
        raise


async def open_invoice(
    db: AsyncSession,
    *,
    line_items: list[LineItemDraft],
    pay_option: PayOption,
    payer_email: str,
    payer_phone: Optional[str] = None,
    provider: Optional[PaymentProvider] = None,
    owner_id: Optional[str] = None,
    primary_swimmer_id: Optional[uuid.UUID] = None,
    correlation: Optional[DeferredCorrelation] = None,
    expected_total: Optional[float] = None,
    description: str = "Swimmer Registration",
    metadata: Optional[dict] = None,
    settings: Optional[Settings] = None,
) -> OpenedInvoice:
    """Create an invoice with its line items and a pending payment.

    Pay-now submissions are initiated with ``provider`` before anything is
    committed. If the provider is unreachable the session is rolled back,
    including any rows the caller added to it, and ``ProviderUnavailable``
    propagates so the parent can resubmit.
    """
    settings = settings or get_settings()
    total = compute_total(line_items)
    if expected_total is not None and abs(expected_total - total) > 0.005:
        raise InvalidRegistration(
            f"Submitted total {expected_total} does not match {total}"
        )
    if pay_option == PayOption.PAY_NOW and provider is None:
        raise InvalidRegistration("A payment provider is required to pay now")

    now = utc_now()
    invoice = Invoice(
        owner_id=owner_id,
        primary_swimmer_id=primary_swimmer_id,
        payer_email=normalize_email(payer_email),
        status=(
            InvoiceStatus.DRAFT
            if pay_option == PayOption.PAY_NOW
            else InvoiceStatus.ISSUED
        ),
        total_amount=total,
        currency=settings.BILLING_CURRENCY,
        due_date=(now + timedelta(days=settings.INVOICE_DUE_DAYS)).date(),
    )
    db.add(invoice)
    await db.flush()

    for position, item in enumerate(line_items):
        db.add(
            InvoiceLineItem(
                invoice_id=invoice.id,
                position=position,
                description=item.description,
                unit_amount=item.unit_amount,
                quantity=item.quantity,
            )
        )

    record = correlation or DeferredCorrelation()
    if record.payer_email is None:
        record = record.model_copy(update={"payer_email": invoice.payer_email})
    payment = Payment(
        invoice_id=invoice.id,
        reference=Payment.generate_reference(REGISTRATION_PREFIX, invoice.id),
        amount=total,
        currency=invoice.currency,
        payer_email=invoice.payer_email,
        payer_phone=payer_phone,
        correlation=dump_correlation(record),
    )
    db.add(payment)
    await db.flush()

    charge = None
    if pay_option == PayOption.PAY_NOW:
        charge = await _initiate_or_rollback(
            db,
            provider,
            invoice,
            payment,
            description=description,
            callback_url=_callback_url(
                settings,
                "/register/confirmation",
                {"invoiceId": str(invoice.id), "reference": payment.reference},
            ),
            metadata=metadata,
        )
        _attach_charge(invoice, payment, provider, charge)

    await db.commit()

    logger.info(
        "Opened invoice %s (%s, total=%s, pay_option=%s)",
        invoice.short_number,
        invoice.status.value,
        total,
        pay_option.value,
        extra={
            "extra_fields": {
                "invoice_id": str(invoice.id),
                "payment_reference": payment.reference,
                "provider": provider.name if charge else None,
            }
        },
    )
    return OpenedInvoice(invoice=invoice, payment=payment, charge=charge)


async def pay_invoice(
    db: AsyncSession,
    invoice: Invoice,
    *,
    provider: PaymentProvider,
    payer_email: str,
    payer_phone: Optional[str] = None,
    metadata: Optional[dict] = None,
    settings: Optional[Settings] = None,
) -> OpenedInvoice:
    """Start paying an existing unpaid invoice.

    A pending payment that was never sent to a provider (pay-later) is
    reused so its recorded swimmers still resolve; otherwise a new payment
    inherits the swimmer list of the invoice's most recent payment.
    """
    settings = settings or get_settings()
    if invoice.status == InvoiceStatus.PAID:
        raise InvoiceAlreadyPaid(f"Invoice {invoice.short_number} is already paid")

    payment = await db.scalar(
        select(Payment)
        .where(
            Payment.invoice_id == invoice.id,
            Payment.status == PaymentStatus.PENDING,
            Payment.provider.is_(None),
        )
        .order_by(Payment.created_at.desc())
        .limit(1)
    )
    if payment is None:
        previous = await db.scalar(
            select(Payment)
            .where(Payment.invoice_id == invoice.id, Payment.correlation.is_not(None))
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        inherited = (
            DeferredCorrelation(
                swimmer_ids=previous.correlation_record.swimmer_ids,
                payer_email=previous.correlation_record.payer_email,
                payer_profile=previous.correlation_record.payer_profile,
            )
            if previous
            else DeferredCorrelation()
        )
        payment = Payment(
            invoice_id=invoice.id,
            reference=Payment.generate_reference(INVOICE_PAYMENT_PREFIX, invoice.id),
            amount=invoice.total_amount,
            currency=invoice.currency,
            correlation=dump_correlation(inherited),
        )
        db.add(payment)

    payment.payer_email = normalize_email(payer_email)
    payment.payer_phone = payer_phone or payment.payer_phone
    await db.flush()

    charge = await _initiate_or_rollback(
        db,
        provider,
        invoice,
        payment,
        description="Invoice Payment",
        callback_url=_callback_url(
            settings, "/invoices", {"reference": payment.reference, "paid": "true"}
        ),
        metadata=metadata,
    )
    _attach_charge(invoice, payment, provider, charge)
    await db.commit()

    logger.info(
        "Initiated payment %s for invoice %s via %s",
        payment.reference,
        invoice.short_number,
        provider.name,
    )
    return OpenedInvoice(invoice=invoice, payment=payment, charge=charge)


async def _record_failure(
    db: AsyncSession, payment: Payment, outcome: ProviderOutcome
) -> ReconcileResult:
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
        .values(
            status=PaymentStatus.FAILED,
            failure_reason=outcome.failure_reason or "Payment failed",
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(payment)

    if result.rowcount == 0:
        logger.info(
            "Failure notification for settled payment %s ignored (status=%s)",
            payment.reference,
            payment.status.value,
        )
        return ReconcileResult(NotificationDisposition.ALREADY_RECONCILED, payment)

    logger.info(
        "Payment %s marked failed: %s", payment.reference, payment.failure_reason
    )
    return ReconcileResult(NotificationDisposition.FAILURE_RECORDED, payment)


async def _flag_for_review(db: AsyncSession, payment: Payment, reason: str) -> None:
    await db.execute(
        update(Payment)
        .where(Payment.id == payment.id)
        .values(needs_review=True, review_reason=reason, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )


async def _claim_payment(
    db: AsyncSession, payment: Payment, outcome: ProviderOutcome
) -> None:
    """Conditionally complete ``payment``; raises ``AlreadyReconciled`` if we lost."""
    now = utc_now()
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
        .values(
            status=PaymentStatus.COMPLETED,
            paid_at=outcome.paid_at or now,
            channel=outcome.channel or payment.channel,
            transaction_reference=outcome.transaction_reference or payment.reference,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise AlreadyReconciled(payment.reference)


async def reconcile(
    db: AsyncSession,
    provider_reference: str,
    outcome: ProviderOutcome,
    *,
    notifier: Optional[ReceiptNotifier] = None,
    settings: Optional[Settings] = None,
) -> ReconcileResult:
    """Apply a provider outcome to the payment it refers to.

    Raises ``PaymentNotFound`` for unknown references and ``AmountMismatch``
    (after flagging the payment for review) when the paid amount differs
    from the recorded one. Repeated or late notifications return a result
    with ``already_reconciled`` set and change nothing.
    """
    settings = settings or get_settings()
    payment = await db.scalar(
        select(Payment).where(Payment.provider_reference == provider_reference)
    )
    if payment is None:
        raise PaymentNotFound(provider_reference)
    if payment.status != PaymentStatus.PENDING:
        logger.info(
            "Payment %s already reconciled (status=%s)",
            payment.reference,
            payment.status.value,
        )
        return ReconcileResult(NotificationDisposition.ALREADY_RECONCILED, payment)

    if not outcome.final:
        return ReconcileResult(NotificationDisposition.IGNORED, payment)
    if not outcome.succeeded:
        return await _record_failure(db, payment, outcome)

    if (
        outcome.amount_paid is None
        or not math.isfinite(outcome.amount_paid)
        or abs(outcome.amount_paid - payment.amount) > settings.PAYMENT_AMOUNT_TOLERANCE
    ):
        mismatch = AmountMismatch(
            payment.reference, payment.amount, outcome.amount_paid
        )
        await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
            .values(
                needs_review=True, review_reason=str(mismatch), updated_at=utc_now()
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(payment)
        logger.warning(
            "Amount mismatch, payment held for review",
            extra={
                "extra_fields": {
                    "payment_reference": payment.reference,
                    "expected": payment.amount,
                    "received": outcome.amount_paid,
                }
            },
        )
        raise mismatch

    try:
        await _claim_payment(db, payment, outcome)
    except AlreadyReconciled:
        await db.rollback()
        await db.refresh(payment)
        logger.info(
            "Payment %s already reconciled (status=%s)",
            payment.reference,
            payment.status.value,
        )
        return ReconcileResult(NotificationDisposition.ALREADY_RECONCILED, payment)

    await db.refresh(payment)
    invoice_result = await db.execute(
        update(Invoice)
        .where(Invoice.id == payment.invoice_id, Invoice.status != InvoiceStatus.PAID)
        .values(
            status=InvoiceStatus.PAID,
            paid_at=payment.paid_at,
            transaction_reference=payment.transaction_reference,
            payment_method=payment.provider.value if payment.provider else None,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if invoice_result.rowcount == 0:
        # Money was taken twice for the same invoice.
        await _flag_for_review(
            db, payment, "Invoice was already settled by another payment"
        )
        logger.warning(
            "Second completed payment for an already paid invoice",
            extra={
                "extra_fields": {
                    "payment_reference": payment.reference,
                    "invoice_id": str(payment.invoice_id),
                }
            },
        )

    invoice = await db.get(Invoice, payment.invoice_id, populate_existing=True)
    approved = await resolver.resolve_and_approve(db, payment=payment, invoice=invoice)
    receipt = await receipts.issue_for(db, payment.id)
    await db.commit()
    await db.refresh(payment)

    logger.info(
        "Payment reconciled",
        extra={
            "extra_fields": {
                "payment_reference": payment.reference,
                "invoice_id": str(invoice.id),
                "receipt_number": receipt.receipt_number,
                "approved_swimmers": len(approved),
            }
        },
    )

    if notifier is not None:
        await receipts.publish_receipt_ready(receipt, notifier)

    return ReconcileResult(
        NotificationDisposition.APPLIED,
        payment,
        invoice=invoice,
        approved_swimmer_ids=approved,
        receipt=receipt,
    )


async def mark_overdue_invoices(db: AsyncSession) -> int:
    """Move issued invoices past their due date to ``due``."""
    today = utc_now().date()
    result = await db.execute(
        update(Invoice)
        .where(Invoice.status == InvoiceStatus.ISSUED, Invoice.due_date < today)
        .values(status=InvoiceStatus.DUE, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount
