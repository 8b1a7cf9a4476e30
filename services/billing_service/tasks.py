"""Background tasks for the billing service."""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Callable, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.billing_service.exceptions import ProviderUnavailable
from services.billing_service.models import (
    NotificationSource,
    Payment,
    PaymentProvider,
    PaymentStatus,
    Receipt,
)
from services.billing_service.providers import ProviderLookup, build_provider
from services.billing_service.services import ledger
from services.billing_service.services.intake import apply_outcome
from services.billing_service.services.notifier import ReceiptNotifier, get_notifier
from sqlalchemy import select

logger = get_logger(__name__)

SWEEP_BATCH_SIZE = 200


async def reconcile_stale_payments(
    session_factory: Callable = AsyncSessionLocal,
    providers: ProviderLookup = build_provider,
    notifier: Optional[ReceiptNotifier] = None,
) -> int:
    """Verify payments still pending after ``STALE_PAYMENT_MINUTES``.

    Only providers with a status query (Paystack) can be swept; each result
    goes through the same reconcile path as a webhook.
    """
    settings = get_settings()
    cutoff = utc_now() - timedelta(minutes=settings.STALE_PAYMENT_MINUTES)
    notifier = notifier or get_notifier()
    processed = 0

    async with session_factory() as db:
        result = await db.execute(
            select(Payment)
            .where(
                Payment.status == PaymentStatus.PENDING,
                Payment.provider == PaymentProvider.PAYSTACK,
                Payment.provider_reference.is_not(None),
                Payment.initiated_at <= cutoff,
            )
            .order_by(Payment.initiated_at.asc())
            .limit(SWEEP_BATCH_SIZE)
        )
        # Plain tuples: a rollback inside reconcile expires loaded payments.
        pending = [(p.reference, p.provider_reference) for p in result.scalars()]
        if not pending:
            return 0

        provider = providers(PaymentProvider.PAYSTACK)
        for reference, provider_reference in pending:
            try:
                outcome = await provider.fetch_status(provider_reference)
            except ProviderUnavailable as exc:
                logger.warning(
                    "Pending payment verify failed for %s: %s",
                    reference,
                    exc,
                )
                continue

            await apply_outcome(
                db,
                provider.name,
                NotificationSource.SWEEPER,
                outcome,
                notifier=notifier,
                payload=outcome.raw,
            )
            if outcome.final:
                processed += 1

    if processed:
        logger.info("Reconciled %d stale pending payments", processed)
    return processed


async def mark_overdue_invoices(session_factory: Callable = AsyncSessionLocal) -> int:
    async with session_factory() as db:
        count = await ledger.mark_overdue_invoices(db)
    if count:
        logger.info("Marked %d invoices as due", count)
    return count


async def send_receipt_email(
    receipt_id: str, session_factory: Callable = AsyncSessionLocal
) -> bool:
    """Send the receipt email for a newly issued receipt.

    Delivery is a logging stub until an email provider is configured.
    """
    async with session_factory() as db:
        receipt = await db.get(Receipt, uuid.UUID(receipt_id))
    if receipt is None:
        logger.warning("Receipt %s not found, email skipped", receipt_id)
        return False
    if not receipt.payer_email:
        logger.warning(
            "Receipt %s has no payer email, email skipped", receipt.receipt_number
        )
        return False

    logger.info(
        "Receipt email sent",
        extra={
            "extra_fields": {
                "to": receipt.payer_email,
                "receipt_number": receipt.receipt_number,
                "invoice_id": str(receipt.invoice_id),
                "amount": receipt.amount,
                "payer_name": receipt.payer_name,
            }
        },
    )
    return True
