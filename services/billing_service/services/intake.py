"""Apply inbound provider notifications and keep an audit trail of them.

Webhooks and callbacks must always be acknowledged, so every anomaly is
absorbed here and written to the notification log instead of surfacing as
an HTTP error.
"""

from typing import Optional

from libs.common.logging import get_logger
from services.billing_service.exceptions import (
    AmountMismatch,
    MalformedNotification,
    PaymentNotFound,
)
from services.billing_service.models import (
    NotificationDisposition,
    NotificationLog,
    NotificationSource,
)
from services.billing_service.providers.base import PaymentProvider, ProviderOutcome
from services.billing_service.services import ledger
from services.billing_service.services.notifier import ReceiptNotifier
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def record_notification(
    db: AsyncSession,
    *,
    provider: str,
    source: NotificationSource,
    disposition: NotificationDisposition,
    provider_reference: Optional[str] = None,
    event_type: Optional[str] = None,
    detail: Optional[str] = None,
    payload: Optional[dict] = None,
) -> NotificationLog:
    entry = NotificationLog(
        provider=provider,
        source=source,
        disposition=disposition,
        provider_reference=provider_reference,
        event_type=event_type,
        detail=detail,
        payload=payload,
    )
    db.add(entry)
    await db.commit()
    return entry


async def apply_outcome(
    db: AsyncSession,
    provider_name: str,
    source: NotificationSource,
    outcome: ProviderOutcome,
    *,
    notifier: Optional[ReceiptNotifier] = None,
    payload: Optional[dict] = None,
) -> NotificationDisposition:
    """Reconcile a decoded outcome, absorbing every error into a log entry."""
    detail = None
    try:
        result = await ledger.reconcile(
            db, outcome.provider_reference, outcome, notifier=notifier
        )
        disposition = result.disposition
        if disposition == NotificationDisposition.IGNORED:
            detail = f"Non-final status: {outcome.event_type}"
        elif result.receipt is not None:
            detail = f"Receipt {result.receipt.receipt_number}"
    except PaymentNotFound:
        disposition = NotificationDisposition.UNKNOWN_REFERENCE
        logger.warning(
            f"Notification for unknown payment reference: {outcome.provider_reference}",
            extra={
                "extra_fields": {
                    "provider": provider_name,
                    "event": outcome.event_type,
                }
            },
        )
    except AmountMismatch as e:
        disposition = NotificationDisposition.AMOUNT_MISMATCH
        detail = str(e)
    except Exception as e:
        await db.rollback()
        disposition = NotificationDisposition.ERROR
        detail = f"{type(e).__name__}: {e}"
        logger.exception(
            "Notification processing failed",
            extra={
                "extra_fields": {
                    "provider": provider_name,
                    "reference": outcome.provider_reference,
                }
            },
        )

    await record_notification(
        db,
        provider=provider_name,
        source=source,
        disposition=disposition,
        provider_reference=outcome.provider_reference,
        event_type=outcome.event_type,
        detail=detail,
        payload=payload,
    )
    return disposition


async def process_notification(
    db: AsyncSession,
    provider: PaymentProvider,
    payload: dict,
    *,
    notifier: Optional[ReceiptNotifier] = None,
) -> NotificationDisposition:
    """Decode and apply a webhook/callback body. Never raises for bad input."""
    try:
        outcome = provider.decode(payload)
    except MalformedNotification as e:
        logger.warning(
            f"Malformed {provider.name} notification ignored: {e}",
        )
        await record_notification(
            db,
            provider=provider.name,
            source=NotificationSource.WEBHOOK,
            disposition=NotificationDisposition.MALFORMED,
            detail=str(e),
            payload=payload if isinstance(payload, dict) else None,
        )
        return NotificationDisposition.MALFORMED
    except Exception as e:
        logger.exception(f"Decoding {provider.name} notification failed")
        await record_notification(
            db,
            provider=provider.name,
            source=NotificationSource.WEBHOOK,
            disposition=NotificationDisposition.ERROR,
            detail=f"{type(e).__name__}: {e}",
            payload=payload if isinstance(payload, dict) else None,
        )
        return NotificationDisposition.ERROR

    return await apply_outcome(
        db,
        provider.name,
        NotificationSource.WEBHOOK,
        outcome,
        notifier=notifier,
        payload=payload,
    )
