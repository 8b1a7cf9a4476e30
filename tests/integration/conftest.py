"""
Integration test fixtures: request payload builders and signed webhook
senders for the billing API.
"""

import hashlib
import hmac
import json

import pytest
from libs.common.config import get_settings

SWIMMER_NAMES = ["Amani", "Baraka", "Chausiku", "Dalila"]


@pytest.fixture
def registration_payload():
    def _build(swimmers: int = 2, email: str = "achieng@example.com", **overrides):
        payload = {
            "payer": {
                "full_name": "Achieng Otieno",
                "email": email,
                "phone_number": "0712345678",
                "relationship": "parent",
                "emergency_contact_name": "Juma Otieno",
                "emergency_contact_relationship": "uncle",
                "emergency_contact_phone": "0722333444",
            },
            "swimmers": [
                {
                    "first_name": SWIMMER_NAMES[i],
                    "last_name": "Otieno",
                    "date_of_birth": f"201{i}-05-17",
                    "squad": "Juniors",
                }
                for i in range(swimmers)
            ],
            "consents": {
                "data_accuracy": True,
                "code_of_conduct": True,
                "media_consent": True,
            },
            "pay_option": "pay_now",
            "provider": "paystack",
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def send_paystack_event(client):
    """POST a Paystack event signed with the configured secret key."""

    async def _send(event: dict, signature: str | None = None):
        body = json.dumps(event).encode("utf-8")
        if signature is None:
            signature = hmac.new(
                get_settings().PAYSTACK_SECRET_KEY.encode("utf-8"),
                body,
                hashlib.sha512,
            ).hexdigest()
        return await client.post(
            "/billing/webhooks/paystack",
            content=body,
            headers={
                "content-type": "application/json",
                "x-paystack-signature": signature,
            },
        )

    return _send
