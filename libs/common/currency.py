"""Currency helpers for club billing.

Internal storage unit: shillings (float, e.g. 3500.0 = KES 3,500).
Hosted gateways (Paystack) exchange amounts in the smallest unit:
100 cents = KES 1. M-Pesa only accepts whole shillings.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

CENTS_PER_SHILLING: int = 100


def to_minor_units(amount: float) -> int:
    """Convert shillings to cents (round half-up)."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * CENTS_PER_SHILLING)


def from_minor_units(minor: int) -> float:
    """Convert cents to shillings."""
    return minor / CENTS_PER_SHILLING


def to_whole_units(amount: float) -> int:
    """Truncate to whole shillings (STK push rejects fractional amounts)."""
    return int(Decimal(str(amount)).to_integral_value(rounding=ROUND_FLOOR))


def format_amount(amount: float, currency: str = "KES") -> str:
    """Human display, e.g. ``KES 7,000``."""
    if float(amount).is_integer():
        return f"{currency} {amount:,.0f}"
    return f"{currency} {amount:,.2f}"
