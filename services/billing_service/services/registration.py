"""Turn a registration submission into swimmers, consents and an invoice."""

from dataclasses import dataclass
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.config import Settings, get_settings
from libs.common.logging import get_logger
from services.billing_service.consent import CONSENT_POLICY_TEXT, CONSENT_VERSION
from services.billing_service.correlation import DeferredCorrelation, DraftPayerProfile
from services.billing_service.exceptions import InvalidRegistration
from services.billing_service.models import (
    ConsentRecord,
    ParentProfile,
    PayOption,
    Swimmer,
    SwimmerStatus,
)
from services.billing_service.providers.base import PaymentProvider
from services.billing_service.schemas import RegistrationRequest
from services.billing_service.services.ledger import (
    LineItemDraft,
    OpenedInvoice,
    normalize_email,
    open_invoice,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class RequestOrigin:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


async def _resolve_owner(
    db: AsyncSession, email: str, current_user: Optional[AuthUser]
) -> Optional[str]:
    """Account that should own the new records, if the payer already has one."""
    if current_user is not None:
        return current_user.user_id
    return await db.scalar(
        select(ParentProfile.account_id).where(ParentProfile.email == email)
    )


async def submit_registration(
    db: AsyncSession,
    payload: RegistrationRequest,
    *,
    provider: Optional[PaymentProvider],
    current_user: Optional[AuthUser] = None,
    origin: Optional[RequestOrigin] = None,
    settings: Optional[Settings] = None,
) -> OpenedInvoice:
    settings = settings or get_settings()
    origin = origin or RequestOrigin()
    payer = payload.payer
    payer_email = normalize_email(payer.email)
    pay_later = payload.pay_option == PayOption.PAY_LATER

    fee_total = round(settings.REGISTRATION_FEE_KES * len(payload.swimmers), 2)
    submitted = payload.total_amount
    if submitted is not None and abs(submitted - fee_total) > 0.005:
        raise InvalidRegistration(
            f"Submitted total {submitted} does not match {fee_total}"
        )

    owner_id = await _resolve_owner(db, payer_email, current_user)

    swimmers = [
        Swimmer(
            owner_id=owner_id,
            submitted_by_email=payer_email,
            first_name=s.first_name.strip(),
            last_name=s.last_name.strip(),
            date_of_birth=s.date_of_birth,
            gender=s.gender,
            squad=s.squad,
            medical_notes=s.medical_notes,
            status=SwimmerStatus.PENDING,
            registration_complete=True,
            payment_deferred=pay_later,
        )
        for s in payload.swimmers
    ]
    db.add_all(swimmers)
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        raise InvalidRegistration(
            "One or more swimmers are already registered to this account"
        ) from e

    db.add_all(
        [
            ConsentRecord(
                owner_id=owner_id,
                swimmer_id=swimmer.id,
                submitted_by_email=payer_email,
                data_accuracy=payload.consents.data_accuracy,
                code_of_conduct=payload.consents.code_of_conduct,
                media_consent=payload.consents.media_consent,
                consent_text=CONSENT_POLICY_TEXT,
                consent_version=CONSENT_VERSION,
                ip_address=origin.ip_address,
                user_agent=origin.user_agent,
            )
            for swimmer in swimmers
        ]
    )

    line_items = [
        LineItemDraft(
            description=f"Registration: {swimmer.full_name}",
            unit_amount=settings.REGISTRATION_FEE_KES,
        )
        for swimmer in swimmers
    ]
    correlation = DeferredCorrelation(
        swimmer_ids=[swimmer.id for swimmer in swimmers],
        payer_email=payer_email,
        payer_profile=DraftPayerProfile(
            full_name=payer.full_name,
            email=payer_email,
            phone_number=payer.phone_number,
            relationship=payer.relationship,
            emergency_contact_name=payer.emergency_contact_name,
            emergency_contact_relationship=payer.emergency_contact_relationship,
            emergency_contact_phone=payer.emergency_contact_phone,
        ),
    )

    opened = await open_invoice(
        db,
        line_items=line_items,
        pay_option=payload.pay_option,
        payer_email=payer_email,
        payer_phone=payer.phone_number,
        provider=None if pay_later else provider,
        owner_id=owner_id,
        primary_swimmer_id=swimmers[0].id,
        correlation=correlation,
        expected_total=payload.total_amount,
        description=f"Swimmer Registration - {len(swimmers)} swimmer(s)",
        metadata={
            "payer_name": payer.full_name,
            "payer_email": payer_email,
            "payer_phone": payer.phone_number,
            "swimmers": [
                {"id": str(s.id), "name": s.full_name, "squad": s.squad}
                for s in swimmers
            ],
        },
        settings=settings,
    )

    logger.info(
        "Registration submitted",
        extra={
            "extra_fields": {
                "invoice_id": str(opened.invoice.id),
                "swimmers": len(swimmers),
                "pay_option": payload.pay_option.value,
                "linked_to_account": owner_id is not None,
            }
        },
    )
    return opened
