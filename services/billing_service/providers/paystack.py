"""
Paystack adapter (hosted card / mobile-money gateway).

Provides:
- Transaction initialization (returns the hosted checkout URL)
- Transaction verification by reference
- Webhook decoding and signature verification
"""

import hashlib
import hmac
from typing import Optional

import httpx
from libs.common.config import Settings, get_settings
from libs.common.currency import from_minor_units, to_minor_units
from libs.common.datetime_utils import parse_iso
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

CHANNELS = ["card", "mobile_money", "bank_transfer"]
SUCCESS_EVENT = "charge.success"
FAILURE_EVENT = "charge.failed"
# Verification statuses after which the transaction can no longer succeed.
TERMINAL_FAILURE_STATUSES = {"failed", "reversed"}


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check ``x-paystack-signature``: HMAC-SHA512 of the raw body, hex encoded."""
    if not signature or not secret:
        return False
    computed = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(computed, signature)


class PaystackProvider(PaymentProvider):
    name = "paystack"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {self.settings.PAYSTACK_SECRET_KEY}",
            "Content-Type": "application/json",
        }

    @property
    def supports_status_query(self) -> bool:
        return True

    async def _request(self, method: str, endpoint: str, json_data=None) -> dict:
        if not self.settings.PAYSTACK_SECRET_KEY:
            raise ProviderUnavailable(
                self.name, "PAYSTACK_SECRET_KEY is not configured"
            )

        url = f"{self.settings.PAYSTACK_API_BASE_URL.rstrip('/')}{endpoint}"
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.PROVIDER_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, url, headers=self._headers, json=json_data
                )
        except httpx.HTTPError as e:
            logger.error(
                "Paystack request failed",
                extra={"extra_fields": {"endpoint": endpoint, "error": str(e)}},
            )
            raise ProviderUnavailable(self.name, str(e)) from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            logger.error(
                f"Paystack API error: {response.status_code} - {data}",
                extra={"extra_fields": {"endpoint": endpoint}},
            )
            raise ProviderUnavailable(
                self.name,
                data.get("message", "Unknown Paystack error"),
                status_code=response.status_code,
            )
        if not data.get("status"):
            raise ProviderUnavailable(
                self.name, data.get("message", "Paystack request failed")
            )
        return data

    async def initiate(self, intent: PaymentIntent) -> PendingCharge:
        payload = {
            "email": intent.email,
            "amount": to_minor_units(intent.amount),
            "reference": intent.reference,
            "currency": intent.currency,
            "callback_url": intent.callback_url,
            "channels": CHANNELS,
            "metadata": {
                **intent.metadata,
                "custom_fields": [
                    {
                        "display_name": "Payment For",
                        "variable_name": "payment_for",
                        "value": intent.description,
                    }
                ],
            },
        }
        data = await self._request("POST", "/transaction/initialize", payload)
        body = data.get("data") or {}
        authorization_url = body.get("authorization_url")
        if not authorization_url:
            raise ProviderUnavailable(self.name, "No authorization_url returned")

        return PendingCharge(
            provider_reference=body.get("reference") or intent.reference,
            authorization_url=authorization_url,
            handles={
                "access_code": body.get("access_code"),
                "authorization_url": authorization_url,
            },
        )

    async def fetch_status(self, provider_reference: str) -> ProviderOutcome:
        data = await self._request("GET", f"/transaction/verify/{provider_reference}")
        body = data.get("data")
        if not isinstance(body, dict):
            raise ProviderUnavailable(self.name, "Invalid verification response")

        tx_status = body.get("status")
        outcome = self._outcome_from_transaction(body, event_type=f"verify.{tx_status}")
        if tx_status == "success":
            outcome.succeeded = True
        elif tx_status in TERMINAL_FAILURE_STATUSES:
            outcome.succeeded = False
            outcome.failure_reason = body.get("gateway_response") or tx_status
        else:
            outcome.succeeded = False
            outcome.final = False
            outcome.failure_reason = tx_status
        return outcome

    def decode(self, notification: dict) -> ProviderOutcome:
        if not isinstance(notification, dict):
            raise MalformedNotification("Paystack event is not an object")
        event = notification.get("event")
        data = notification.get("data")
        if not event or not isinstance(data, dict):
            raise MalformedNotification("Paystack event missing 'event' or 'data'")
        if not data.get("reference") or not isinstance(data["reference"], str):
            raise MalformedNotification("Paystack event missing data.reference")

        try:
            outcome = self._outcome_from_transaction(data, event_type=event)
        except (TypeError, ValueError, ArithmeticError) as e:
            raise MalformedNotification(f"Bad Paystack event data: {e}") from e
        if event == SUCCESS_EVENT:
            if data.get("amount") is None:
                raise MalformedNotification("charge.success without amount")
            outcome.succeeded = True
        elif event == FAILURE_EVENT:
            outcome.succeeded = False
            outcome.failure_reason = data.get("gateway_response") or "charge.failed"
        else:
            outcome.succeeded = False
            outcome.final = False
        return outcome

    @staticmethod
    def _outcome_from_transaction(data: dict, event_type: str) -> ProviderOutcome:
        amount = data.get("amount")
        return ProviderOutcome(
            provider_reference=data.get("reference"),
            succeeded=False,
            amount_paid=from_minor_units(amount) if amount is not None else None,
            channel=data.get("channel"),
            paid_at=parse_iso(data.get("paid_at") or data.get("paidAt")),
            transaction_reference=data.get("reference"),
            event_type=event_type,
            raw=data,
        )
