"""Provider webhooks: Paystack events and M-Pesa STK callbacks."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.billing_service.models import NotificationDisposition, PaymentProvider
from services.billing_service.providers import ProviderLookup, get_provider_lookup
from services.billing_service.providers.mpesa import verify_callback_token
from services.billing_service.providers.paystack import verify_signature
from services.billing_service.services.intake import process_notification
from services.billing_service.services.notifier import ReceiptNotifier, get_notifier
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/billing", tags=["webhooks"])
settings = get_settings()
logger = get_logger(__name__)


@router.post("/webhooks/paystack")
async def paystack_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    providers: ProviderLookup = Depends(get_provider_lookup),
    notifier: ReceiptNotifier = Depends(get_notifier),
):
    """
    Paystack webhook endpoint (no auth; verified by x-paystack-signature).

    Always acknowledged with 200 once the signature checks out, so Paystack
    does not retry events we have already absorbed.
    """
    raw = await request.body()
    signature = request.headers.get("x-paystack-signature")
    if not verify_signature(raw, signature, settings.PAYSTACK_SECRET_KEY):
        logger.warning("Paystack webhook rejected: invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    try:
        payload = json.loads(raw.decode("utf-8") or "null")
    except ValueError:
        payload = None

    try:
        disposition = await process_notification(
            db, providers(PaymentProvider.PAYSTACK), payload, notifier=notifier
        )
    except SQLAlchemyError:
        logger.exception("Paystack webhook could not be recorded")
        return {"received": True}

    logger.info(
        "Paystack webhook processed",
        extra={"extra_fields": {"disposition": disposition.value}},
    )
    return {"received": True}


@router.post("/webhooks/mpesa/{token}")
async def mpesa_callback(
    token: str,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    providers: ProviderLookup = Depends(get_provider_lookup),
    notifier: ReceiptNotifier = Depends(get_notifier),
):
    """
    M-Pesa STK push result callback.

    Safaricom does not sign callbacks; the URL carries a shared secret
    token instead.
    """
    if not verify_callback_token(token, settings.MPESA_CALLBACK_TOKEN):
        logger.warning("M-Pesa callback rejected: invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid callback token"
        )

    try:
        payload = await request.json()
    except ValueError:
        payload = None

    try:
        disposition = await process_notification(
            db, providers(PaymentProvider.MPESA), payload, notifier=notifier
        )
    except SQLAlchemyError:
        logger.exception("M-Pesa callback could not be recorded")
        return {"ResultCode": 0, "ResultDesc": "Callback received"}

    if disposition == NotificationDisposition.APPLIED:
        return {"ResultCode": 0, "ResultDesc": "Payment processed successfully"}
    return {"ResultCode": 0, "ResultDesc": "Callback received"}
