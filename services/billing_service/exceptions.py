"""Domain errors raised by the billing core.

Routers translate the user-facing ones into ``HTTPException``; webhook
handlers absorb them and record the outcome in the notification log.
"""


class BillingError(Exception):
    """Base class for billing errors."""


class ProviderUnavailable(BillingError):
    """Provider could not be reached, rejected our credentials or returned an error."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class MalformedNotification(BillingError):
    """Notification payload is missing fields we need to act on it."""


class AmountMismatch(BillingError):
    def __init__(self, reference: str, expected: float, received: float):
        super().__init__(
            f"Amount mismatch for {reference}: expected {expected}, received {received}"
        )
        self.reference = reference
        self.expected = expected
        self.received = received


class AlreadyReconciled(BillingError):
    """Payment left ``pending`` before this notification could apply."""


class LinkConflict(BillingError):
    """Linking would violate swimmer identity uniqueness for the account."""


class PaymentNotFound(BillingError):
    pass


class InvalidRegistration(BillingError):
    pass


class InvoiceAlreadyPaid(BillingError):
    pass
