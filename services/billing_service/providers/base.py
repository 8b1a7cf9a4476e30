"""Provider-neutral payment types.

Each collection channel (hosted gateway, push payment) is wrapped in an
adapter exposing the same two calls: ``initiate`` asks the provider to
collect money and returns the handle it will later report against, and
``decode`` turns a provider notification into a ``ProviderOutcome``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class PaymentIntent:
    """What we ask a provider to collect."""

    reference: str
    amount: float
    currency: str
    email: str
    phone_number: Optional[str] = None
    description: str = "Swimmer Registration"
    callback_url: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class PendingCharge:
    """Handle returned by ``initiate``."""

    provider_reference: str
    authorization_url: Optional[str] = None
    handles: dict = field(default_factory=dict)
    customer_message: Optional[str] = None


@dataclass
class ProviderOutcome:
    """A provider's verdict on a charge, from a notification or a status query."""

    provider_reference: str
    succeeded: bool
    amount_paid: Optional[float] = None
    channel: Optional[str] = None
    paid_at: Optional[datetime] = None
    transaction_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    event_type: Optional[str] = None
    # False for in-flight statuses ("ongoing", "abandoned"): nothing to apply.
    final: bool = True
    raw: Optional[dict[str, Any]] = None


class PaymentProvider(ABC):
    name: str

    @abstractmethod
    async def initiate(self, intent: PaymentIntent) -> PendingCharge:
        """Start a charge. Raises ``ProviderUnavailable`` on any failure."""

    @abstractmethod
    def decode(self, notification: dict) -> ProviderOutcome:
        """Decode a notification. Raises ``MalformedNotification``."""

    @property
    def supports_status_query(self) -> bool:
        return False

    async def fetch_status(self, provider_reference: str) -> ProviderOutcome:
        raise NotImplementedError(f"{self.name} does not support status queries")
