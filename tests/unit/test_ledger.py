"""Unit tests for the payment ledger.

Tests call ledger functions directly with the db_session fixture.
"""

import asyncio
import re
import uuid
from datetime import timedelta

import pytest
from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.billing_service.exceptions import (
    AmountMismatch,
    InvalidRegistration,
    InvoiceAlreadyPaid,
    PaymentNotFound,
    ProviderUnavailable,
)
from services.billing_service.models import (
    Invoice,
    InvoiceStatus,
    NotificationDisposition,
    Payment,
    PaymentStatus,
    PayOption,
    Receipt,
    Swimmer,
    SwimmerStatus,
)
from services.billing_service.services import ledger
from services.billing_service.services.ledger import LineItemDraft
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.attributes import set_committed_value
from tests.factories import InvoiceFactory, PaymentFactory, create_billable
from tests.fakes import RecordingNotifier, paystack_outcome


async def _receipt_count(db, payment_id) -> int:
    return await db.scalar(
        select(func.count())
        .select_from(Receipt)
        .where(Receipt.payment_id == payment_id)
    )


async def _swimmer_statuses(db, swimmers) -> set:
    result = await db.execute(
        select(Swimmer.status).where(Swimmer.id.in_([s.id for s in swimmers]))
    )
    return set(result.scalars().all())


# ---------------------------------------------------------------------------
# reconcile
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_applies_success_once(db_session, notifier):
    """A success settles payment and invoice, approves swimmers, issues a receipt."""
    invoice, payment, swimmers = await create_billable(db_session, swimmers=2)

    result = await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 7000.0),
        notifier=notifier,
    )

    assert result.disposition == NotificationDisposition.APPLIED
    assert result.payment.status == PaymentStatus.COMPLETED
    assert result.payment.paid_at is not None
    assert result.invoice.status == InvoiceStatus.PAID
    assert result.invoice.payment_method == "paystack"
    assert sorted(result.approved_swimmer_ids) == sorted(s.id for s in swimmers)
    assert await _swimmer_statuses(db_session, swimmers) == {SwimmerStatus.APPROVED}
    assert re.fullmatch(r"RCP-\d{4}-\d{6}", result.receipt.receipt_number)
    assert notifier.receipts == [result.receipt]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_duplicate_notification_is_noop(db_session, notifier):
    invoice, payment, _ = await create_billable(db_session)
    outcome = paystack_outcome(payment.provider_reference, 3500.0)

    first = await ledger.reconcile(
        db_session, payment.provider_reference, outcome, notifier=notifier
    )
    second = await ledger.reconcile(
        db_session, payment.provider_reference, outcome, notifier=notifier
    )

    assert first.disposition == NotificationDisposition.APPLIED
    assert second.disposition == NotificationDisposition.ALREADY_RECONCILED
    assert second.already_reconciled
    assert second.receipt is None
    assert await _receipt_count(db_session, payment.id) == 1
    assert len(notifier.receipts) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_losing_a_race_changes_nothing(db_session, notifier):
    """A caller that read the payment as pending but lost the claim backs off."""
    invoice, payment, _ = await create_billable(db_session)
    outcome = paystack_outcome(payment.provider_reference, 3500.0)
    first = await ledger.reconcile(db_session, payment.provider_reference, outcome)
    paid_at = first.payment.paid_at

    # Simulate a concurrent reader holding a stale "pending" snapshot.
    set_committed_value(payment, "status", PaymentStatus.PENDING)

    result = await ledger.reconcile(
        db_session, payment.provider_reference, outcome, notifier=notifier
    )

    assert result.disposition == NotificationDisposition.ALREADY_RECONCILED
    assert result.payment.status == PaymentStatus.COMPLETED
    assert result.payment.paid_at == paid_at
    assert await _receipt_count(db_session, payment.id) == 1
    assert notifier.receipts == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_reconciles_settle_exactly_once(tmp_path):
    """Three deliveries race on separate connections to a file database."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    sessions = async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    notifier = RecordingNotifier()
    try:
        async with sessions() as setup:
            _, payment, swimmers = await create_billable(setup, swimmers=2)
        reference = payment.provider_reference

        async def _deliver():
            async with sessions() as db:
                result = await ledger.reconcile(
                    db,
                    reference,
                    paystack_outcome(reference, 7000.0),
                    notifier=notifier,
                )
                return result.disposition

        dispositions = await asyncio.gather(*(_deliver() for _ in range(3)))

        assert sorted(d.value for d in dispositions) == [
            "already_reconciled",
            "already_reconciled",
            "applied",
        ]
        async with sessions() as db:
            assert await _receipt_count(db, payment.id) == 1
            statuses = await _swimmer_statuses(db, swimmers)
            assert statuses == {SwimmerStatus.APPROVED}
        assert len(notifier.receipts) == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_amount_mismatch_holds_payment_for_review(db_session):
    invoice, payment, swimmers = await create_billable(db_session)

    with pytest.raises(AmountMismatch) as exc_info:
        await ledger.reconcile(
            db_session,
            payment.provider_reference,
            paystack_outcome(payment.provider_reference, 3000.0),
        )

    assert exc_info.value.expected == 3500.0
    assert exc_info.value.received == 3000.0
    await db_session.refresh(payment)
    assert payment.status == PaymentStatus.PENDING
    assert payment.needs_review is True
    assert "3000.0" in payment.review_reason
    refreshed = await db_session.get(Invoice, invoice.id, populate_existing=True)
    assert refreshed.status == InvoiceStatus.ISSUED
    assert await _swimmer_statuses(db_session, swimmers) == {SwimmerStatus.PENDING}
    assert await _receipt_count(db_session, payment.id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_tolerates_rounding_within_tolerance(db_session):
    invoice, payment, _ = await create_billable(db_session)

    result = await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 3499.5),
    )

    assert result.disposition == NotificationDisposition.APPLIED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_failure_marks_payment_failed(db_session):
    invoice, payment, swimmers = await create_billable(db_session)

    result = await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(
            payment.provider_reference,
            3500.0,
            succeeded=False,
            failure_reason="Declined",
        ),
    )

    assert result.disposition == NotificationDisposition.FAILURE_RECORDED
    assert result.payment.status == PaymentStatus.FAILED
    assert result.payment.failure_reason == "Declined"
    refreshed = await db_session.get(Invoice, invoice.id, populate_existing=True)
    assert refreshed.status == InvoiceStatus.ISSUED
    assert await _swimmer_statuses(db_session, swimmers) == {SwimmerStatus.PENDING}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_late_failure_does_not_undo_completed_payment(db_session):
    invoice, payment, _ = await create_billable(db_session)
    await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 3500.0),
    )

    result = await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 3500.0, succeeded=False),
    )

    assert result.disposition == NotificationDisposition.ALREADY_RECONCILED
    assert result.payment.status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_success_after_failure_is_not_applied(db_session):
    invoice, payment, _ = await create_billable(db_session)
    await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 3500.0, succeeded=False),
    )

    result = await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 3500.0),
    )

    assert result.disposition == NotificationDisposition.ALREADY_RECONCILED
    assert result.payment.status == PaymentStatus.FAILED
    assert await _receipt_count(db_session, payment.id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redelivery_with_different_amount_is_already_reconciled(db_session):
    invoice, payment, _ = await create_billable(db_session)
    await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 3500.0),
    )

    result = await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 10.0),
    )

    assert result.disposition == NotificationDisposition.ALREADY_RECONCILED
    assert result.payment.status == PaymentStatus.COMPLETED
    assert result.payment.needs_review is False
    assert await _receipt_count(db_session, payment.id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_late_success_with_wrong_amount_for_failed_payment_is_ignored(
    db_session,
):
    invoice, payment, _ = await create_billable(db_session)
    await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 3500.0, succeeded=False),
    )

    result = await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(payment.provider_reference, 10.0),
    )

    assert result.disposition == NotificationDisposition.ALREADY_RECONCILED
    assert result.payment.status == PaymentStatus.FAILED
    assert result.payment.needs_review is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_non_final_outcome_is_ignored(db_session):
    invoice, payment, _ = await create_billable(db_session)

    result = await ledger.reconcile(
        db_session,
        payment.provider_reference,
        paystack_outcome(
            payment.provider_reference, 3500.0, succeeded=False, final=False
        ),
    )

    assert result.disposition == NotificationDisposition.IGNORED
    assert result.payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_reference_raises(db_session):
    with pytest.raises(PaymentNotFound):
        await ledger.reconcile(
            db_session, "no-such-ref", paystack_outcome("no-such-ref", 3500.0)
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_second_payment_for_paid_invoice_is_flagged(db_session):
    invoice, first, _ = await create_billable(db_session)
    second = PaymentFactory.create(invoice_id=invoice.id, amount=3500.0)
    db_session.add(second)
    await db_session.commit()

    await ledger.reconcile(
        db_session,
        first.provider_reference,
        paystack_outcome(first.provider_reference, 3500.0),
    )
    result = await ledger.reconcile(
        db_session,
        second.provider_reference,
        paystack_outcome(second.provider_reference, 3500.0),
    )

    assert result.disposition == NotificationDisposition.APPLIED
    assert result.payment.needs_review is True
    assert result.payment.review_reason == (
        "Invoice was already settled by another payment"
    )
    assert result.invoice.status == InvoiceStatus.PAID
    assert result.receipt is not None


# ---------------------------------------------------------------------------
# open_invoice / pay_invoice
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_open_invoice_pay_later_issues_invoice(db_session):
    opened = await ledger.open_invoice(
        db_session,
        line_items=[LineItemDraft("Registration: A", 3500.0)],
        pay_option=PayOption.PAY_LATER,
        payer_email="  Parent@Example.com ",
    )

    assert opened.charge is None
    assert opened.invoice.status == InvoiceStatus.ISSUED
    assert opened.invoice.payer_email == "parent@example.com"
    assert opened.invoice.total_amount == 3500.0
    assert opened.invoice.due_date == (utc_now() + timedelta(days=7)).date()
    assert opened.payment.provider is None
    assert opened.payment.provider_reference is None
    assert opened.payment.reference.startswith("REG-")
    assert opened.payment.correlation_record.provider == "deferred"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_open_invoice_pay_now_initiates_with_provider(db_session, paystack):
    opened = await ledger.open_invoice(
        db_session,
        line_items=[
            LineItemDraft("Registration: A", 3500.0),
            LineItemDraft("Registration: B", 3500.0),
        ],
        pay_option=PayOption.PAY_NOW,
        payer_email="parent@example.com",
        provider=paystack,
    )

    assert opened.invoice.status == InvoiceStatus.DRAFT
    assert opened.invoice.total_amount == 7000.0
    assert opened.payment.provider_reference == opened.charge.provider_reference
    assert opened.payment.initiated_at is not None
    record = opened.payment.correlation_record
    assert record.provider == "paystack"
    assert record.access_code.startswith("ac_")

    intent = paystack.intents[0]
    assert intent.amount == 7000.0
    assert intent.metadata["invoice_id"] == str(opened.invoice.id)
    assert "/register/confirmation?" in intent.callback_url
    assert f"reference={opened.payment.reference}" in intent.callback_url


@pytest.mark.asyncio
@pytest.mark.unit
async def test_open_invoice_rejects_mismatched_total(db_session, paystack):
    with pytest.raises(InvalidRegistration):
        await ledger.open_invoice(
            db_session,
            line_items=[LineItemDraft("Registration: A", 3500.0)],
            pay_option=PayOption.PAY_NOW,
            payer_email="parent@example.com",
            provider=paystack,
            expected_total=1000.0,
        )
    assert paystack.intents == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_open_invoice_provider_failure_persists_nothing(db_session, paystack):
    paystack.error = ProviderUnavailable("paystack", "timed out")

    with pytest.raises(ProviderUnavailable):
        await ledger.open_invoice(
            db_session,
            line_items=[LineItemDraft("Registration: A", 3500.0)],
            pay_option=PayOption.PAY_NOW,
            payer_email="parent@example.com",
            provider=paystack,
        )

    assert await db_session.scalar(select(func.count()).select_from(Invoice)) == 0
    assert await db_session.scalar(select(func.count()).select_from(Payment)) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_compute_total_rejects_empty_and_invalid_items():
    with pytest.raises(InvalidRegistration):
        ledger.compute_total([])
    with pytest.raises(InvalidRegistration):
        ledger.compute_total([LineItemDraft("Free", 0.0)])
    assert ledger.compute_total([LineItemDraft("Kit", 1250.5, quantity=2)]) == 2501.0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pay_invoice_reuses_deferred_payment(db_session, mpesa):
    invoice, payment, swimmers = await create_billable(db_session, provider=None)

    opened = await ledger.pay_invoice(
        db_session,
        invoice,
        provider=mpesa,
        payer_email="Parent@Example.com",
        payer_phone="0712345678",
    )

    assert opened.payment.id == payment.id
    assert opened.payment.provider.value == "mpesa"
    assert opened.payment.provider_reference.startswith("ws_CO_")
    record = opened.payment.correlation_record
    assert record.provider == "mpesa"
    assert record.swimmer_ids == [s.id for s in swimmers]
    assert "/invoices?" in mpesa.intents[0].callback_url


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pay_invoice_creates_new_payment_inheriting_swimmers(
    db_session, paystack
):
    invoice, payment, swimmers = await create_billable(db_session)

    opened = await ledger.pay_invoice(
        db_session, invoice, provider=paystack, payer_email="parent@example.com"
    )

    assert opened.payment.id != payment.id
    assert opened.payment.reference.startswith("INV-")
    assert opened.payment.amount == invoice.total_amount
    assert opened.payment.correlation_record.swimmer_ids == [s.id for s in swimmers]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pay_invoice_rejects_paid_invoice(db_session, paystack):
    invoice = InvoiceFactory.create(status=InvoiceStatus.PAID)
    db_session.add(invoice)
    await db_session.commit()

    with pytest.raises(InvoiceAlreadyPaid):
        await ledger.pay_invoice(
            db_session, invoice, provider=paystack, payer_email="a@b.com"
        )
    assert paystack.intents == []


# ---------------------------------------------------------------------------
# mark_overdue_invoices
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_mark_overdue_invoices_only_touches_issued_past_due(db_session):
    yesterday = (utc_now() - timedelta(days=1)).date()
    overdue = InvoiceFactory.create(due_date=yesterday)
    paid = InvoiceFactory.create(due_date=yesterday, status=InvoiceStatus.PAID)
    current = InvoiceFactory.create()
    db_session.add_all([overdue, paid, current])
    await db_session.commit()

    count = await ledger.mark_overdue_invoices(db_session)

    assert count == 1
    statuses = {
        row.id: row.status
        for row in (
            await db_session.execute(select(Invoice.id, Invoice.status))
        ).all()
    }
    assert statuses[overdue.id] == InvoiceStatus.DUE
    assert statuses[paid.id] == InvoiceStatus.PAID
    assert statuses[current.id] == InvoiceStatus.ISSUED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_generate_reference_format():
    invoice_id = uuid.uuid4()
    reference = Payment.generate_reference("REG", invoice_id)
    assert re.fullmatch(rf"REG-{invoice_id.hex[:8]}-\d{{16}}", reference)
