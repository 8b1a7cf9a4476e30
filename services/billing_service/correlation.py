"""Typed correlation records stored on a Payment.

A Payment carries the data needed to resolve what it pays for once the
provider reports back, possibly minutes later and through a different
channel: which swimmers the submission created, who the payer is, and the
provider-specific handles returned at initiation. Each provider has its own
schema; the ``provider`` field discriminates them in the stored document.
"""

import uuid
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class DraftPayerProfile(BaseModel):
    """Payer details captured before the payer has an account."""

    full_name: str
    email: str
    phone_number: str
    relationship: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None
    emergency_contact_phone: Optional[str] = None


class _CorrelationBase(BaseModel):
    swimmer_ids: list[uuid.UUID] = Field(default_factory=list)
    payer_email: Optional[str] = None
    payer_profile: Optional[DraftPayerProfile] = None

    model_config = ConfigDict(extra="forbid")


class DeferredCorrelation(_CorrelationBase):
    """Pay-later payment: no provider chosen yet."""

    provider: Literal["deferred"] = "deferred"


class PaystackCorrelation(_CorrelationBase):
    provider: Literal["paystack"] = "paystack"
    access_code: Optional[str] = None
    authorization_url: Optional[str] = None


class MpesaCorrelation(_CorrelationBase):
    provider: Literal["mpesa"] = "mpesa"
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None


Correlation = Annotated[
    Union[DeferredCorrelation, PaystackCorrelation, MpesaCorrelation],
    Field(discriminator="provider"),
]

_adapter: TypeAdapter = TypeAdapter(Correlation)


def parse_correlation(document: Optional[dict]) -> Correlation:
    """Load a stored correlation document; empty documents read as deferred."""
    if not document:
        return DeferredCorrelation()
    return _adapter.validate_python(document)


def dump_correlation(record) -> dict:
    return record.model_dump(mode="json")


def with_provider(record, provider: str, **handles):
    """Re-type a correlation for ``provider``, keeping the shared fields."""
    shared = record.model_dump(
        include={"swimmer_ids", "payer_email", "payer_profile"}
    )
    return _adapter.validate_python({**shared, "provider": provider, **handles})
