"""Payment provider adapters."""

from typing import Callable

from services.billing_service.models.enums import PaymentProvider as ProviderName
from services.billing_service.providers.base import (
    PaymentIntent,
    PaymentProvider,
    PendingCharge,
    ProviderOutcome,
)
from services.billing_service.providers.mpesa import MpesaProvider
from services.billing_service.providers.paystack import PaystackProvider

ProviderLookup = Callable[[ProviderName], PaymentProvider]


def build_provider(name: ProviderName) -> PaymentProvider:
    if name == ProviderName.PAYSTACK:
        return PaystackProvider()
    if name == ProviderName.MPESA:
        return MpesaProvider()
    raise ValueError(f"Unknown payment provider: {name}")


def get_provider_lookup() -> ProviderLookup:
    """FastAPI dependency; tests override it to inject fake providers."""
    return build_provider


__all__ = [
    "MpesaProvider",
    "PaymentIntent",
    "PaymentProvider",
    "PaystackProvider",
    "PendingCharge",
    "ProviderLookup",
    "ProviderOutcome",
    "build_provider",
    "get_provider_lookup",
]
