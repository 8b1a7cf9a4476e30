"""Hand-off of receipt-ready events to the background worker.

Email delivery is not done in-process: the notifier enqueues an arq job and
the worker sends the email. The enqueue happens after the reconciling
transaction commits, so a queue outage never undoes a recorded payment.
"""

from typing import Optional, Protocol

from libs.common.arq_config import get_arq_pool
from libs.common.logging import get_logger
from redis.exceptions import RedisError
from services.billing_service.models import Receipt

logger = get_logger(__name__)

RECEIPT_EMAIL_JOB = "task_send_receipt_email"


class ReceiptNotifier(Protocol):
    async def receipt_ready(self, receipt: Receipt) -> None: ...


class QueueReceiptNotifier:
    """Enqueue ``task_send_receipt_email`` for each issued receipt."""

    async def receipt_ready(self, receipt: Receipt) -> None:
        try:
            pool = await get_arq_pool()
            await pool.enqueue_job(
                RECEIPT_EMAIL_JOB,
                str(receipt.id),
                _job_id=f"receipt-email:{receipt.id}",
            )
        except (RedisError, OSError) as e:
            logger.error(
                "Could not enqueue receipt email",
                extra={
                    "extra_fields": {
                        "receipt_number": receipt.receipt_number,
                        "error": str(e),
                    }
                },
            )
            return
        logger.info(
            "Receipt email queued",
            extra={"extra_fields": {"receipt_number": receipt.receipt_number}},
        )


_default_notifier: Optional[ReceiptNotifier] = None


def get_notifier() -> ReceiptNotifier:
    """FastAPI dependency returning the process-wide notifier."""
    global _default_notifier
    if _default_notifier is None:
        _default_notifier = QueueReceiptNotifier()
    return _default_notifier
