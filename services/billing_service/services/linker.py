"""Attach registrations submitted before the payer had an account.

A parent can register and pay anonymously, then sign up later with the
same email. Linking claims every owner-less invoice, swimmer and consent
record submitted under that email.
"""

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.billing_service.exceptions import LinkConflict
from services.billing_service.models import (
    ConsentRecord,
    Invoice,
    ParentProfile,
    Payment,
    Swimmer,
)
from services.billing_service.services.ledger import normalize_email
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class LinkResult:
    invoices: int = 0
    swimmers: int = 0
    consents: int = 0
    conflict: bool = False
    profile_created: bool = False
    conflicting_swimmer_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def linked_any(self) -> bool:
        return bool(self.invoices or self.swimmers or self.consents)


def _matches(column, email: str):
    return func.lower(func.trim(column)) == email


async def _conflicting_swimmers(
    db: AsyncSession, account_id: str, email: str
) -> list[Swimmer]:
    """Orphaned swimmers that would collide with another swimmer once claimed."""
    result = await db.execute(
        select(Swimmer).where(
            or_(
                Swimmer.owner_id == account_id,
                Swimmer.owner_id.is_(None)
                & _matches(Swimmer.submitted_by_email, email),
            )
        )
    )
    by_identity = defaultdict(list)
    for swimmer in result.scalars().all():
        key = (swimmer.first_name, swimmer.last_name, swimmer.date_of_birth)
        by_identity[key].append(swimmer)
    return [
        swimmer
        for group in by_identity.values()
        if len(group) > 1
        for swimmer in group
        if swimmer.owner_id is None
    ]


async def _materialize_profile(
    db: AsyncSession, account_id: str, email: str
) -> Optional[ParentProfile]:
    """Create the account's ParentProfile from the newest draft payer profile."""
    existing = await db.scalar(
        select(ParentProfile).where(
            or_(ParentProfile.account_id == account_id, ParentProfile.email == email)
        )
    )
    if existing:
        return None

    result = await db.execute(
        select(Payment)
        .where(_matches(Payment.payer_email, email), Payment.correlation.is_not(None))
        .order_by(Payment.created_at.desc())
    )
    for payment in result.scalars():
        draft = payment.correlation_record.payer_profile
        if draft is None:
            continue
        profile = ParentProfile(
            account_id=account_id,
            email=email,
            full_name=draft.full_name,
            phone_number=draft.phone_number,
            relationship=draft.relationship,
            emergency_contact_name=draft.emergency_contact_name,
            emergency_contact_relationship=draft.emergency_contact_relationship,
            emergency_contact_phone=draft.emergency_contact_phone,
        )
        db.add(profile)
        await db.flush()
        return profile
    return None


async def _link(db: AsyncSession, account_id: str, email: str) -> LinkResult:
    now = utc_now()
    try:
        invoices = await db.execute(
            update(Invoice)
            .where(Invoice.owner_id.is_(None), _matches(Invoice.payer_email, email))
            .values(owner_id=account_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        swimmers = await db.execute(
            update(Swimmer)
            .where(
                Swimmer.owner_id.is_(None), _matches(Swimmer.submitted_by_email, email)
            )
            .values(owner_id=account_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        consents = await db.execute(
            update(ConsentRecord)
            .where(
                ConsentRecord.owner_id.is_(None),
                _matches(ConsentRecord.submitted_by_email, email),
            )
            .values(owner_id=account_id)
            .execution_options(synchronize_session=False)
        )
        profile = await _materialize_profile(db, account_id, email)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise LinkConflict(str(e.orig)) from e

    return LinkResult(
        invoices=invoices.rowcount,
        swimmers=swimmers.rowcount,
        consents=consents.rowcount,
        profile_created=profile is not None,
    )


async def link_orphaned_records(
    db: AsyncSession, *, account_id: str, email: Optional[str]
) -> LinkResult:
    """Give ``account_id`` ownership of records submitted under ``email``.

    Runs as one transaction. If claiming the swimmers would duplicate one the
    account already owns, nothing is linked and the result has ``conflict``
    set with zero counts. Running it again after a successful link is a
    no-op.
    """
    normalized = normalize_email(email)
    if not normalized:
        return LinkResult()

    try:
        result = await _link(db, account_id, normalized)
    except LinkConflict as e:
        conflicting = await _conflicting_swimmers(db, account_id, normalized)
        logger.warning(
            "Orphaned records conflict with the account's swimmers, nothing linked",
            extra={
                "extra_fields": {
                    "account_id": account_id,
                    "email": normalized,
                    "error": str(e),
                    "conflicting_swimmers": [
                        {
                            "id": str(s.id),
                            "name": f"{s.first_name} {s.last_name}",
                            "date_of_birth": str(s.date_of_birth),
                        }
                        for s in conflicting
                    ],
                }
            },
        )
        return LinkResult(
            conflict=True,
            conflicting_swimmer_ids=[s.id for s in conflicting],
        )

    if result.linked_any or result.profile_created:
        logger.info(
            "Linked orphaned registrations",
            extra={
                "extra_fields": {
                    "account_id": account_id,
                    "invoices": result.invoices,
                    "swimmers": result.swimmers,
                    "consents": result.consents,
                    "profile_created": result.profile_created,
                }
            },
        )
    return result
