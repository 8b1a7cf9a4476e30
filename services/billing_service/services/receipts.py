"""Receipt issuing and rendering."""

import uuid
from typing import Optional

from libs.common.datetime_utils import ensure_aware, parse_iso, utc_now
from libs.common.logging import get_logger
from libs.common.pdf import generate_receipt_pdf
from services.billing_service.models import (
    Invoice,
    InvoiceLineItem,
    ParentProfile,
    Payment,
    PaymentStatus,
    Receipt,
    ReceiptSequence,
    Swimmer,
)
from services.billing_service.services.notifier import ReceiptNotifier
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def load_line_items(
    db: AsyncSession, invoice_id: uuid.UUID
) -> list[InvoiceLineItem]:
    result = await db.execute(
        select(InvoiceLineItem)
        .where(InvoiceLineItem.invoice_id == invoice_id)
        .order_by(InvoiceLineItem.position)
    )
    return list(result.scalars().all())


def _fallback_receipt_number(payment: Payment) -> str:
    return f"RCP-{utc_now().strftime('%Y%m%d%H%M%S')}-{payment.id.hex[:8].upper()}"


async def _allocate_receipt_number(db: AsyncSession, payment: Payment) -> str:
    """Take the next number from the ticket table.

    Runs in a savepoint so a broken sequence only loses the ticket, not the
    surrounding reconciliation.
    """
    try:
        async with db.begin_nested():
            ticket = ReceiptSequence(payment_id=payment.id)
            db.add(ticket)
            await db.flush()
            sequence = ticket.id
    except SQLAlchemyError as e:
        number = _fallback_receipt_number(payment)
        logger.warning(
            "Receipt sequence unavailable, using fallback number",
            extra={"extra_fields": {"receipt_number": number, "error": str(e)}},
        )
        return number
    return f"RCP-{utc_now().year}-{sequence:06d}"


async def _payer_name(
    db: AsyncSession, invoice: Invoice, payment: Payment
) -> Optional[str]:
    if invoice.owner_id:
        name = await db.scalar(
            select(ParentProfile.full_name).where(
                ParentProfile.account_id == invoice.owner_id
            )
        )
        if name:
            return name
    profile = payment.correlation_record.payer_profile
    return profile.full_name if profile else None


def _snapshot(
    invoice: Invoice, items, payment: Payment, payer_name, payer_email
) -> dict:
    paid_at = ensure_aware(payment.paid_at)
    return {
        "invoice_id": str(invoice.id),
        "invoice_total": invoice.total_amount,
        "line_items": [
            {
                "description": item.description,
                "quantity": item.quantity,
                "unit_amount": item.unit_amount,
            }
            for item in items
        ],
        "payment_reference": payment.reference,
        "transaction_reference": payment.transaction_reference,
        "amount": payment.amount,
        "currency": payment.currency,
        "payment_channel": payment.channel,
        "paid_at": paid_at.isoformat() if paid_at else None,
        "customer": {"email": payer_email, "name": payer_name},
    }


async def issue_for(db: AsyncSession, payment_id: uuid.UUID) -> Receipt:
    """Return the receipt for a completed payment, creating it on first call.

    Does not commit and never sends email; the caller owns the transaction
    and publishes the receipt-ready event after committing.
    """
    existing = await db.scalar(select(Receipt).where(Receipt.payment_id == payment_id))
    if existing:
        return existing

    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise ValueError(f"Payment {payment_id} not found")
    if payment.status != PaymentStatus.COMPLETED:
        raise ValueError(f"Payment {payment.reference} is not completed")

    invoice = await db.get(Invoice, payment.invoice_id)
    items = await load_line_items(db, invoice.id)
    items_total = round(sum(item.amount for item in items), 2)
    if abs(items_total - invoice.total_amount) > 0.005:
        logger.warning(
            "Invoice line items do not add up to the invoice total",
            extra={
                "extra_fields": {
                    "invoice_id": str(invoice.id),
                    "line_items_total": items_total,
                    "total_amount": invoice.total_amount,
                }
            },
        )

    payer_email = payment.payer_email or invoice.payer_email
    payer_name = await _payer_name(db, invoice, payment)
    receipt = Receipt(
        payment_id=payment.id,
        invoice_id=invoice.id,
        receipt_number=await _allocate_receipt_number(db, payment),
        amount=payment.amount,
        currency=payment.currency,
        channel=payment.channel,
        payer_name=payer_name,
        payer_email=payer_email,
        snapshot=_snapshot(invoice, items, payment, payer_name, payer_email),
    )
    db.add(receipt)
    await db.flush()

    logger.info(
        "Receipt issued",
        extra={
            "extra_fields": {
                "receipt_number": receipt.receipt_number,
                "payment_reference": payment.reference,
            }
        },
    )
    return receipt


async def publish_receipt_ready(receipt: Receipt, notifier: ReceiptNotifier) -> None:
    await notifier.receipt_ready(receipt)


async def render_receipt_pdf(db: AsyncSession, receipt: Receipt) -> bytes:
    """Render the downloadable PDF from the receipt's snapshot."""
    snapshot = receipt.snapshot or {}
    invoice = await db.get(Invoice, receipt.invoice_id)

    payer_phone = None
    swimmers: list[dict] = []
    if invoice is not None and invoice.owner_id:
        payer_phone = await db.scalar(
            select(ParentProfile.phone_number).where(
                ParentProfile.account_id == invoice.owner_id
            )
        )
        result = await db.execute(
            select(Swimmer)
            .where(Swimmer.owner_id == invoice.owner_id)
            .order_by(Swimmer.first_name)
        )
        swimmers = [
            {"name": s.full_name, "squad": s.squad} for s in result.scalars().all()
        ]

    invoice_number = (
        invoice.short_number if invoice else f"INV-{receipt.invoice_id.hex[:8].upper()}"
    )
    paid_at = snapshot.get("paid_at")
    return generate_receipt_pdf(
        receipt_number=receipt.receipt_number,
        invoice_number=invoice_number,
        amount=receipt.amount,
        currency=receipt.currency,
        paid_at=ensure_aware(
            parse_iso(paid_at) if paid_at else receipt.issued_at
        ),
        payment_reference=snapshot.get("transaction_reference")
        or snapshot.get("payment_reference"),
        payment_channel=receipt.channel,
        payer_name=receipt.payer_name,
        payer_email=receipt.payer_email,
        payer_phone=payer_phone,
        line_items=snapshot.get("line_items") or [],
        swimmers=swimmers,
    )
