"""Post-redirect payment verification and receipt download."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Response, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.billing_service.exceptions import (
    AmountMismatch,
    PaymentNotFound,
    ProviderUnavailable,
)
from services.billing_service.models import (
    Invoice,
    NotificationDisposition,
    NotificationSource,
    Payment,
    PaymentStatus,
    Receipt,
)
from services.billing_service.providers import ProviderLookup, get_provider_lookup
from services.billing_service.schemas import (
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from services.billing_service.services import ledger
from services.billing_service.services.intake import record_notification
from services.billing_service.services.notifier import ReceiptNotifier, get_notifier
from services.billing_service.services.receipts import render_receipt_pdf
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/billing", tags=["payments"])
logger = get_logger(__name__)


async def _verify_response(
    db: AsyncSession, payment: Payment, message: str
) -> VerifyPaymentResponse:
    invoice = await db.get(Invoice, payment.invoice_id)
    receipt_number = await db.scalar(
        select(Receipt.receipt_number).where(Receipt.payment_id == payment.id)
    )
    return VerifyPaymentResponse(
        message=message,
        invoice_id=payment.invoice_id,
        reference=payment.reference,
        status=payment.status,
        invoice_status=invoice.status,
        receipt_number=receipt_number,
        paid_at=payment.paid_at,
    )


def _not_successful(payment_status: str, details: str | None = None):
    detail = f"Payment not successful (status: {payment_status or 'unknown'})"
    if details:
        detail = f"{detail}: {details}"
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


@router.post("/payments/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    payload: VerifyPaymentRequest,
    db: AsyncSession = Depends(get_async_db),
    providers: ProviderLookup = Depends(get_provider_lookup),
    notifier: ReceiptNotifier = Depends(get_notifier),
):
    """
    Confirm a payment after the payer returns from the provider.

    Queries the provider and applies the result through the same ledger
    path as webhooks, so it is safe to call repeatedly and concurrently
    with webhook delivery.
    """
    payment = await db.scalar(
        select(Payment).where(
            or_(
                Payment.reference == payload.reference,
                Payment.provider_reference == payload.reference,
            )
        )
    )
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment record not found")

    if payment.status == PaymentStatus.COMPLETED:
        return await _verify_response(db, payment, "Payment already completed")
    if payment.status == PaymentStatus.FAILED:
        raise _not_successful(payment.status.value, payment.failure_reason)
    if payment.provider is None:
        raise _not_successful(payment.status.value, "Payment has not been started")

    provider = providers(payment.provider)
    if not provider.supports_status_query:
        # Push payments settle through their callback only.
        return await _verify_response(
            db, payment, "Payment is awaiting confirmation from the provider"
        )

    try:
        outcome = await provider.fetch_status(payment.provider_reference)
    except ProviderUnavailable as e:
        logger.error(
            f"Verification failed for {payment.reference}: {e}",
            extra={"extra_fields": {"provider": provider.name}},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not reach the payment provider",
        )

    try:
        result = await ledger.reconcile(
            db, payment.provider_reference, outcome, notifier=notifier
        )
    except PaymentNotFound:
        raise HTTPException(status_code=404, detail="Payment record not found")
    except AmountMismatch as e:
        await record_notification(
            db,
            provider=provider.name,
            source=NotificationSource.VERIFY,
            disposition=NotificationDisposition.AMOUNT_MISMATCH,
            provider_reference=payment.provider_reference,
            event_type=outcome.event_type,
            detail=str(e),
            payload=outcome.raw,
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Paid amount does not match the invoice; payment held for review",
        )

    await record_notification(
        db,
        provider=provider.name,
        source=NotificationSource.VERIFY,
        disposition=result.disposition,
        provider_reference=payment.provider_reference,
        event_type=outcome.event_type,
        payload=outcome.raw,
    )

    if result.payment.status != PaymentStatus.COMPLETED:
        raise _not_successful(
            outcome.failure_reason or result.payment.status.value,
            result.payment.failure_reason,
        )

    message = (
        "Payment already completed"
        if result.already_reconciled
        else "Payment verified and processed successfully"
    )
    return await _verify_response(db, result.payment, message)


@router.get("/receipts/{invoice_id}/download")
async def download_receipt(
    invoice_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_db),
    current_user: AuthUser = Depends(get_current_user),
):
    """
    Download the receipt PDF for a paid invoice (owner or admin).
    """
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    if invoice.owner_id != current_user.user_id and not current_user.is_admin:
        raise HTTPException(
            status_code=403, detail="Unauthorized to access this receipt"
        )

    receipt = await db.scalar(
        select(Receipt)
        .where(Receipt.invoice_id == invoice_id)
        .order_by(Receipt.issued_at.desc())
        .limit(1)
    )
    if receipt is None:
        raise HTTPException(
            status_code=404, detail="Receipt not found for this invoice"
        )

    pdf = await render_receipt_pdf(db, receipt)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": (
                f'attachment; filename="receipt-{receipt.receipt_number}.pdf"'
            )
        },
    )
