"""Admin schemas."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel

from tutormarket.modules.booking.schemas import BookingRead


class BookingFixRequest(BaseModel):
    booking_id: UUID


class BookingFixResult(BaseModel):
    """Outcome of promoting a paid-but-pending booking."""

    success: bool = True
    booking: BookingRead
