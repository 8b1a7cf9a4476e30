"""ARQ worker for billing reconciliation and receipt emails."""

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def task_reconcile_stale_payments(ctx: dict):
    from services.billing_service.tasks import reconcile_stale_payments

    logger.info("Running: reconcile_stale_payments")
    await reconcile_stale_payments()


async def task_mark_overdue_invoices(ctx: dict):
    from services.billing_service.tasks import mark_overdue_invoices

    logger.info("Running: mark_overdue_invoices")
    await mark_overdue_invoices()


async def task_send_receipt_email(ctx: dict, receipt_id: str):
    from services.billing_service.tasks import send_receipt_email

    await send_receipt_email(receipt_id)


async def startup(ctx: dict):
    configure_logging()


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = startup

    functions = [
        task_reconcile_stale_payments,
        task_mark_overdue_invoices,
        task_send_receipt_email,
    ]

    cron_jobs = [
        cron(
            task_reconcile_stale_payments,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
        cron(task_mark_overdue_invoices, hour={0}, minute={15}),
    ]
