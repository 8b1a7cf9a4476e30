"""M-Pesa Express (STK push) adapter.

The payer approves the charge on their handset; Safaricom then posts the
result to our callback URL, keyed by the ``CheckoutRequestID`` returned at
initiation. There is no status query, so a lost callback leaves the payment
pending until the payer retries.
"""

import base64
import hmac
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

import httpx
from libs.common.config import Settings, get_settings
from libs.common.currency import to_whole_units
from libs.common.datetime_utils import parse_compact_timestamp
from libs.common.logging import get_logger
from services.billing_service.exceptions import (
    MalformedNotification,
    ProviderUnavailable,
)
from services.billing_service.providers.base import (
    PaymentIntent,
    PaymentProvider,
    PendingCharge,
    ProviderOutcome,
)

logger = get_logger(__name__)

BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}
OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
CALLBACK_EVENT = "stk.callback"


def normalize_phone(phone_number: str) -> str:
    """Format a Kenyan number as ``2547XXXXXXXX``."""
    formatted = phone_number.strip().replace("+", "").replace(" ", "")
    if formatted.startswith("0"):
        formatted = "254" + formatted[1:]
    if not formatted.startswith("254"):
        formatted = "254" + formatted
    return formatted


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def verify_callback_token(token: Optional[str], expected: str) -> bool:
    if not token or not expected:
        return False
    return hmac.compare_digest(token, expected)


class MpesaProvider(PaymentProvider):
    name = "mpesa"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self.base_url = BASE_URLS[self.settings.MPESA_ENVIRONMENT]

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.settings.PROVIDER_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    def _timestamp(self) -> str:
        return datetime.now(ZoneInfo(self.settings.TIMEZONE)).strftime("%Y%m%d%H%M%S")

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        key = self.settings.MPESA_CONSUMER_KEY
        secret = self.settings.MPESA_CONSUMER_SECRET
        if not key or not secret:
            raise ProviderUnavailable(self.name, "M-Pesa credentials not configured")

        response = await client.get(OAUTH_PATH, auth=(key, secret))
        if not response.is_success:
            logger.error(
                f"M-Pesa auth error: {response.status_code} - {response.text}"
            )
            raise ProviderUnavailable(
                self.name, "Failed to get M-Pesa token", response.status_code
            )
        token = response.json().get("access_token")
        if not token:
            raise ProviderUnavailable(self.name, "OAuth response had no access_token")
        return token

    async def initiate(self, intent: PaymentIntent) -> PendingCharge:
        s = self.settings
        if not s.MPESA_SHORTCODE or not s.MPESA_PASSKEY or not s.MPESA_CALLBACK_URL:
            raise ProviderUnavailable(self.name, "M-Pesa configuration incomplete")
        if not intent.phone_number:
            raise ProviderUnavailable(self.name, "Phone number required for STK push")

        phone = normalize_phone(intent.phone_number)
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": s.MPESA_SHORTCODE,
            "Password": stk_password(s.MPESA_SHORTCODE, s.MPESA_PASSKEY, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": to_whole_units(intent.amount),
            "PartyA": phone,
            "PartyB": s.MPESA_SHORTCODE,
            "PhoneNumber": phone,
            "CallBackURL": (
                f"{s.MPESA_CALLBACK_URL.rstrip('/')}/{s.MPESA_CALLBACK_TOKEN}"
            ),
            "AccountReference": intent.metadata.get("account_reference")
            or intent.reference[:12],
            "TransactionDesc": intent.description,
        }

        try:
            async with self._client() as client:
                token = await self._access_token(client)
                response = await client.post(
                    STK_PUSH_PATH,
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.error(
                "M-Pesa request failed",
                extra={
                    "extra_fields": {"error": str(e), "reference": intent.reference}
                },
            )
            raise ProviderUnavailable(self.name, str(e)) from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.is_success or str(data.get("ResponseCode", "")) != "0":
            logger.error(f"M-Pesa STK push error: {response.status_code} - {data}")
            raise ProviderUnavailable(
                self.name,
                data.get("errorMessage")
                or data.get("ResponseDescription")
                or "Failed to initiate payment",
                status_code=response.status_code,
            )

        checkout_request_id = data.get("CheckoutRequestID")
        if not checkout_request_id:
            raise ProviderUnavailable(self.name, "No CheckoutRequestID returned")

        return PendingCharge(
            provider_reference=checkout_request_id,
            handles={
                "checkout_request_id": checkout_request_id,
                "merchant_request_id": data.get("MerchantRequestID"),
            },
            customer_message=data.get("CustomerMessage"),
        )

    def decode(self, notification: dict) -> ProviderOutcome:
        body = notification.get("Body") if isinstance(notification, dict) else None
        if not isinstance(body, dict):
            raise MalformedNotification("Invalid callback structure")
        callback = body.get("stkCallback")
        if not isinstance(callback, dict):
            raise MalformedNotification("Missing STK callback data")

        checkout_request_id = callback.get("CheckoutRequestID")
        result_code = callback.get("ResultCode")
        if (
            not checkout_request_id
            or not isinstance(checkout_request_id, str)
            or result_code is None
        ):
            raise MalformedNotification("Callback missing CheckoutRequestID/ResultCode")

        try:
            result_code = int(result_code)
        except (TypeError, ValueError) as e:
            raise MalformedNotification(f"Bad ResultCode {result_code!r}") from e

        if result_code != 0:
            return ProviderOutcome(
                provider_reference=checkout_request_id,
                succeeded=False,
                failure_reason=(
                    callback.get("ResultDesc") or f"ResultCode {result_code}"
                ),
                event_type=CALLBACK_EVENT,
                raw=notification,
            )

        metadata = callback.get("CallbackMetadata") or {}
        items = metadata.get("Item") if isinstance(metadata, dict) else None
        details = {
            item.get("Name"): item.get("Value")
            for item in (items if isinstance(items, list) else [])
            if isinstance(item, dict)
        }
        if details.get("Amount") is None or not details.get("MpesaReceiptNumber"):
            raise MalformedNotification("Successful callback missing Amount/receipt")
        try:
            amount_paid = float(details["Amount"])
        except (TypeError, ValueError) as e:
            raise MalformedNotification(f"Bad Amount {details['Amount']!r}") from e

        return ProviderOutcome(
            provider_reference=checkout_request_id,
            succeeded=True,
            amount_paid=amount_paid,
            channel="mpesa",
            paid_at=parse_compact_timestamp(
                details.get("TransactionDate"), self.settings.TIMEZONE
            ),
            transaction_reference=str(details["MpesaReceiptNumber"]),
            event_type=CALLBACK_EVENT,
            raw=notification,
        )
