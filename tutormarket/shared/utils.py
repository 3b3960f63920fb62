"""Shared utility functions."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal


def utc_now() -> datetime:
    """Return aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalize datetime to UTC timezone."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize an amount to two decimal places."""
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def from_minor_units(value: int | str) -> Decimal:
    """Convert an amount in minor units (cents, kobo) to a decimal amount."""
    return to_money(Decimal(str(value)) / 100)


def to_minor_units(value: Decimal) -> int:
    """Convert a decimal amount to integer minor units."""
    return int((to_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))
