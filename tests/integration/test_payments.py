"""Integration tests for payment verification and receipt download."""

import uuid

import pytest
from services.billing_service.exceptions import ProviderUnavailable
from services.billing_service.models import (
    NotificationLog,
    NotificationSource,
    Payment,
    PaymentStatus,
)
from sqlalchemy import select
from tests.factories import InvoiceFactory
from tests.fakes import charge_success, paystack_outcome


async def _register(client, registration_payload, headers=None, **overrides) -> dict:
    response = await client.post(
        "/billing/registrations",
        json=registration_payload(**overrides),
        headers=headers or {},
    )
    assert response.status_code == 201, response.text
    return response.json()


# ---------------------------------------------------------------------------
# POST /billing/payments/verify
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_settles_successful_payment(
    client, db_session, paystack, notifier, registration_payload
):
    data = await _register(client, registration_payload, swimmers=2)
    reference = data["reference"]
    paystack.statuses[reference] = paystack_outcome(reference, 7000.0)

    response = await client.post(
        "/billing/payments/verify", json={"reference": reference}
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["message"] == "Payment verified and processed successfully"
    assert body["status"] == "completed"
    assert body["invoice_status"] == "paid"
    assert body["receipt_number"].startswith("RCP-")
    assert len(notifier.receipts) == 1

    entry = await db_session.scalar(select(NotificationLog))
    assert entry.source == NotificationSource.VERIFY


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_after_webhook_reports_already_completed(
    client, paystack, notifier, registration_payload, send_paystack_event
):
    data = await _register(client, registration_payload, swimmers=1)
    reference = data["reference"]
    await send_paystack_event(charge_success(reference, 350000))

    response = await client.post(
        "/billing/payments/verify", json={"reference": reference}
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Payment already completed"
    assert paystack.status_calls == []
    assert len(notifier.receipts) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_failed_payment_returns_400(
    client, db_session, paystack, registration_payload
):
    data = await _register(client, registration_payload, swimmers=1)
    reference = data["reference"]
    paystack.statuses[reference] = paystack_outcome(
        reference, 3500.0, succeeded=False, failure_reason="Declined"
    )

    response = await client.post(
        "/billing/payments/verify", json={"reference": reference}
    )

    assert response.status_code == 400
    assert "Declined" in response.json()["detail"]
    status = await db_session.scalar(
        select(Payment.status).where(Payment.reference == reference)
    )
    assert status == PaymentStatus.FAILED


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_in_flight_payment_returns_400(
    client, paystack, registration_payload
):
    data = await _register(client, registration_payload, swimmers=1)
    reference = data["reference"]
    paystack.statuses[reference] = paystack_outcome(
        reference, 3500.0, succeeded=False, final=False, failure_reason="ongoing"
    )

    response = await client.post(
        "/billing/payments/verify", json={"reference": reference}
    )

    assert response.status_code == 400
    assert "ongoing" in response.json()["detail"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_amount_mismatch_returns_409(
    client, db_session, paystack, registration_payload
):
    data = await _register(client, registration_payload, swimmers=2)
    reference = data["reference"]
    paystack.statuses[reference] = paystack_outcome(reference, 3500.0)

    response = await client.post(
        "/billing/payments/verify", json={"reference": reference}
    )

    assert response.status_code == 409
    needs_review = await db_session.scalar(
        select(Payment.needs_review).where(Payment.reference == reference)
    )
    assert needs_review is True


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_unknown_reference_returns_404(client):
    response = await client.post(
        "/billing/payments/verify", json={"reference": "REG-unknown"}
    )

    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_provider_outage_returns_502(
    client, paystack, registration_payload
):
    data = await _register(client, registration_payload, swimmers=1)
    paystack.error = ProviderUnavailable("paystack", "timeout")

    response = await client.post(
        "/billing/payments/verify", json={"reference": data["reference"]}
    )

    assert response.status_code == 502


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_push_payment_reports_awaiting_confirmation(
    client, registration_payload
):
    data = await _register(
        client, registration_payload, swimmers=1, provider="mpesa"
    )

    response = await client.post(
        "/billing/payments/verify", json={"reference": data["checkout_request_id"]}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["message"] == "Payment is awaiting confirmation from the provider"


# ---------------------------------------------------------------------------
# GET /billing/receipts/{invoice_id}/download
# ---------------------------------------------------------------------------


async def _paid_owned_invoice(
    client, paystack, registration_payload, auth_headers, send_paystack_event
) -> str:
    headers = auth_headers(user_id="acct-achieng", email="achieng@example.com")
    data = await _register(client, registration_payload, headers=headers, swimmers=1)
    await send_paystack_event(charge_success(data["reference"], 350000))
    return data["invoice_id"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_owner_downloads_receipt_pdf(
    client, paystack, registration_payload, auth_headers, send_paystack_event
):
    invoice_id = await _paid_owned_invoice(
        client, paystack, registration_payload, auth_headers, send_paystack_event
    )

    response = await client.get(
        f"/billing/receipts/{invoice_id}/download",
        headers=auth_headers(user_id="acct-achieng"),
    )

    assert response.status_code == 200, response.text
    assert response.headers["content-type"] == "application/pdf"
    assert 'filename="receipt-RCP-' in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_can_download_any_receipt(
    client, paystack, registration_payload, auth_headers, send_paystack_event
):
    invoice_id = await _paid_owned_invoice(
        client, paystack, registration_payload, auth_headers, send_paystack_event
    )

    response = await client.get(
        f"/billing/receipts/{invoice_id}/download",
        headers=auth_headers(
            user_id="acct-admin", app_metadata={"roles": ["admin"]}
        ),
    )

    assert response.status_code == 200


@pytest.mark.asyncio
@pytest.mark.integration
async def test_other_account_cannot_download_receipt(
    client, paystack, registration_payload, auth_headers, send_paystack_event
):
    invoice_id = await _paid_owned_invoice(
        client, paystack, registration_payload, auth_headers, send_paystack_event
    )

    response = await client.get(
        f"/billing/receipts/{invoice_id}/download",
        headers=auth_headers(user_id="acct-stranger"),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unpaid_invoice_has_no_receipt(client, db_session, auth_headers):
    invoice = InvoiceFactory.create(owner_id="acct-achieng")
    db_session.add(invoice)
    await db_session.commit()

    response = await client.get(
        f"/billing/receipts/{invoice.id}/download",
        headers=auth_headers(user_id="acct-achieng"),
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Receipt not found for this invoice"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_invoice_receipt_returns_404(client, auth_headers):
    response = await client.get(
        f"/billing/receipts/{uuid.uuid4()}/download", headers=auth_headers()
    )

    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "billing"}
