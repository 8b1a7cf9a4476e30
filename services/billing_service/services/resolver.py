"""Decide which swimmers a completed payment approves, and approve them."""

import uuid
from typing import Sequence

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.billing_service.models import Invoice, Payment, Swimmer, SwimmerStatus
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def resolve_swimmers(
    db: AsyncSession, *, payment: Payment, invoice: Invoice
) -> list[uuid.UUID]:
    """Return the swimmer ids ``payment`` pays for.

    The ids recorded on the payment at submission time win. Payments
    without them (an owner paying an existing invoice) fall back to every
    pending swimmer of the invoice owner, plus the invoice's primary
    swimmer when it is still pending.
    """
    explicit = payment.correlation_record.swimmer_ids
    if explicit:
        return list(explicit)

    swimmer_ids: list[uuid.UUID] = []
    if invoice.owner_id:
        result = await db.execute(
            select(Swimmer.id)
            .where(
                Swimmer.owner_id == invoice.owner_id,
                Swimmer.status == SwimmerStatus.PENDING,
            )
            .order_by(Swimmer.created_at.asc())
        )
        swimmer_ids = list(result.scalars().all())

    if invoice.primary_swimmer_id and invoice.primary_swimmer_id not in swimmer_ids:
        primary_status = await db.scalar(
            select(Swimmer.status).where(Swimmer.id == invoice.primary_swimmer_id)
        )
        if primary_status == SwimmerStatus.PENDING:
            swimmer_ids.append(invoice.primary_swimmer_id)

    logger.info(
        "Resolved swimmers by owner fallback",
        extra={
            "extra_fields": {
                "payment_reference": payment.reference,
                "swimmer_count": len(swimmer_ids),
            }
        },
    )
    return swimmer_ids


async def approve_swimmers(
    db: AsyncSession, swimmer_ids: Sequence[uuid.UUID]
) -> list[uuid.UUID]:
    """Move pending swimmers to approved; returns the ids actually changed.

    Approved or inactive swimmers are left as they are.
    """
    if not swimmer_ids:
        return []

    result = await db.execute(
        select(Swimmer.id).where(
            Swimmer.id.in_(swimmer_ids), Swimmer.status == SwimmerStatus.PENDING
        )
    )
    pending_ids = list(result.scalars().all())
    if not pending_ids:
        return []

    now = utc_now()
    await db.execute(
        update(Swimmer)
        .where(Swimmer.id.in_(pending_ids), Swimmer.status == SwimmerStatus.PENDING)
        .values(
            status=SwimmerStatus.APPROVED,
            approved_at=now,
            payment_deferred=False,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    return pending_ids


async def resolve_and_approve(
    db: AsyncSession, *, payment: Payment, invoice: Invoice
) -> list[uuid.UUID]:
    swimmer_ids = await resolve_swimmers(db, payment=payment, invoice=invoice)
    approved = await approve_swimmers(db, swimmer_ids)
    if not approved:
        logger.info(
            "No swimmers found to approve for this payment",
            extra={"extra_fields": {"payment_reference": payment.reference}},
        )
    return approved
