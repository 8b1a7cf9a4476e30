"""Registration submission, invoice payment and account linking."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.auth.dependencies import get_current_user, get_optional_user
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.billing_service.exceptions import (
    InvalidRegistration,
    InvoiceAlreadyPaid,
    ProviderUnavailable,
)
from services.billing_service.models import Invoice, ParentProfile, PayOption
from services.billing_service.providers import ProviderLookup, get_provider_lookup
from services.billing_service.schemas import (
    CheckoutResponse,
    LinkedCounts,
    LinkResponse,
    PayInvoiceRequest,
    RegistrationRequest,
)
from services.billing_service.services.ledger import OpenedInvoice, pay_invoice
from services.billing_service.services.linker import link_orphaned_records
from services.billing_service.services.registration import (
    RequestOrigin,
    submit_registration,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/billing", tags=["registrations"])
logger = get_logger(__name__)

PROVIDER_UNAVAILABLE_DETAIL = (
    "Payment provider is unavailable. Nothing was charged; please try again."
)


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


def _checkout_response(opened: OpenedInvoice, message: str) -> CheckoutResponse:
    charge = opened.charge
    return CheckoutResponse(
        message=(charge.customer_message if charge else None) or message,
        invoice_id=opened.invoice.id,
        payment_id=opened.payment.id,
        reference=opened.payment.reference,
        invoice_status=opened.invoice.status,
        total_amount=opened.invoice.total_amount,
        currency=opened.invoice.currency,
        pay_later=charge is None,
        provider=opened.payment.provider.value if opened.payment.provider else None,
        authorization_url=charge.authorization_url if charge else None,
        checkout_request_id=(
            charge.handles.get("checkout_request_id") if charge else None
        ),
        customer_message=charge.customer_message if charge else None,
    )


@router.post(
    "/registrations",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_registration(
    payload: RegistrationRequest,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    providers: ProviderLookup = Depends(get_provider_lookup),
):
    """
    Submit a registration for one or more swimmers.

    Open to anonymous parents. Pay-now submissions return the provider
    handle (hosted checkout URL or STK push request id); pay-later
    submissions return an issued invoice.
    """
    pay_later = payload.pay_option == PayOption.PAY_LATER
    provider = None if pay_later else providers(payload.provider)
    try:
        opened = await submit_registration(
            db,
            payload,
            provider=provider,
            current_user=current_user,
            origin=RequestOrigin(
                ip_address=_client_ip(request),
                user_agent=request.headers.get("user-agent"),
            ),
        )
    except InvalidRegistration as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ProviderUnavailable as e:
        logger.error(
            f"Registration payment initiation failed: {e}",
            extra={"extra_fields": {"provider": e.provider}},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=PROVIDER_UNAVAILABLE_DETAIL,
        )

    if pay_later:
        message = (
            "Registration submitted successfully! "
            "You can pay later from your dashboard."
        )
    else:
        message = "Payment initialized successfully"
    return _checkout_response(opened, message)


@router.post("/invoices/{invoice_id}/pay", response_model=CheckoutResponse)
async def pay_existing_invoice(
    invoice_id: uuid.UUID,
    payload: PayInvoiceRequest,
    db: AsyncSession = Depends(get_async_db),
    current_user: AuthUser = Depends(get_current_user),
    providers: ProviderLookup = Depends(get_provider_lookup),
):
    """
    Pay an existing unpaid invoice owned by the caller.
    """
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    if invoice.owner_id != current_user.user_id:
        raise HTTPException(status_code=403, detail="Unauthorized to pay this invoice")

    profile = await db.scalar(
        select(ParentProfile).where(ParentProfile.account_id == current_user.user_id)
    )
    payer_email = (
        (profile.email if profile else None)
        or current_user.email
        or invoice.payer_email
    )
    payer_phone = payload.phone_number or (profile.phone_number if profile else None)

    try:
        opened = await pay_invoice(
            db,
            invoice,
            provider=providers(payload.provider),
            payer_email=payer_email,
            payer_phone=payer_phone,
            metadata={
                "payer_name": profile.full_name if profile else None,
                "payer_email": payer_email,
                "payer_phone": payer_phone,
            },
        )
    except InvoiceAlreadyPaid:
        raise HTTPException(status_code=400, detail="Invoice already paid")
    except ProviderUnavailable as e:
        logger.error(
            f"Invoice payment initiation failed: {e}",
            extra={"extra_fields": {"invoice_id": str(invoice_id)}},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=PROVIDER_UNAVAILABLE_DETAIL,
        )
    return _checkout_response(opened, "Payment initialized successfully")


@router.post("/registrations/link", response_model=LinkResponse)
async def link_my_registrations(
    db: AsyncSession = Depends(get_async_db),
    current_user: AuthUser = Depends(get_current_user),
):
    """
    Link registrations submitted before the caller had an account.
    """
    result = await link_orphaned_records(
        db, account_id=current_user.user_id, email=current_user.email
    )
    if result.conflict:
        message = "Your registration data is already linked to your account"
    elif result.linked_any:
        message = "Successfully linked your registration data!"
    else:
        message = "No orphaned registrations found for your email"

    return LinkResponse(
        message=message,
        linked=LinkedCounts(
            invoices=result.invoices,
            swimmers=result.swimmers,
            consents=result.consents,
        ),
        conflict=result.conflict,
    )
