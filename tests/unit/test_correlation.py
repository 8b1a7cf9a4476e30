"""Unit tests for payment correlation records."""

import uuid

import pytest
from pydantic import ValidationError
from services.billing_service.correlation import (
    DeferredCorrelation,
    MpesaCorrelation,
    PaystackCorrelation,
    dump_correlation,
    parse_correlation,
    with_provider,
)


@pytest.mark.unit
def test_empty_document_reads_as_deferred():
    assert isinstance(parse_correlation(None), DeferredCorrelation)
    assert isinstance(parse_correlation({}), DeferredCorrelation)


@pytest.mark.unit
def test_with_provider_keeps_shared_fields():
    swimmer_id = uuid.uuid4()
    deferred = DeferredCorrelation(swimmer_ids=[swimmer_id], payer_email="a@b.com")

    record = with_provider(
        deferred,
        "mpesa",
        checkout_request_id="ws_CO_1",
        merchant_request_id="1-2-3",
    )

    assert isinstance(record, MpesaCorrelation)
    assert record.swimmer_ids == [swimmer_id]
    assert record.payer_email == "a@b.com"
    assert record.checkout_request_id == "ws_CO_1"


@pytest.mark.unit
def test_stored_document_parses_back_to_provider_type():
    record = PaystackCorrelation(
        swimmer_ids=[uuid.uuid4()], access_code="ac_1", authorization_url="https://x"
    )

    parsed = parse_correlation(dump_correlation(record))

    assert parsed == record


@pytest.mark.unit
def test_handles_of_another_provider_are_rejected():
    with pytest.raises(ValidationError):
        parse_correlation({"provider": "paystack", "checkout_request_id": "ws_CO_1"})
