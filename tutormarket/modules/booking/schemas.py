"""Booking schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from tutormarket.core.enums import BookingStatusEnum, PaymentGatewayEnum


class BookingCreate(BaseModel):
    """Scheduled booking request from a student."""

    tutor_id: UUID
    scheduled_at: datetime
    duration_minutes: int | None = Field(default=None, ge=15, le=240)
    notes: str | None = Field(default=None, max_length=2000)


class InstantBookingCreate(BaseModel):
    """Instant booking request from a student."""

    tutor_id: UUID
    notes: str | None = Field(default=None, max_length=2000)


class BookingStatusUpdate(BaseModel):
    """Participant-driven status change."""

    status: BookingStatusEnum


class BookingRespondRequest(BaseModel):
    """Tutor answer to a pending booking."""

    action: Literal["accept", "decline"]
    reason: str | None = Field(default=None, max_length=512)


class BookingCancelRequest(BaseModel):
    """Cancel booking request."""

    reason: str | None = Field(default=None, max_length=512)


class BookingRescheduleRequest(BaseModel):
    """Tutor request to move a session."""

    new_scheduled_at: datetime
    reason: str | None = Field(default=None, max_length=512)


class BookingRead(BaseModel):
    """Booking response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    tutor_id: UUID
    scheduled_at: datetime
    duration_minutes: int
    is_instant: bool
    notes: str | None
    status: BookingStatusEnum
    price: Decimal
    currency: str
    paid_at: datetime | None
    payment_method: PaymentGatewayEnum | None
    payment_reference: str | None
    confirmed_at: datetime | None
    canceled_at: datetime | None
    completed_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime


class BookingActionResult(BaseModel):
    """Acknowledgement of a tutor cancel or reschedule."""

    success: bool = True
    message: str
    booking: BookingRead


class BookingPaymentStatusRead(BaseModel):
    """Payment state of a booking as seen by its participants."""

    is_paid: bool
    payment_method: PaymentGatewayEnum | None
    payment_reference: str | None
    paid_at: datetime | None
    amount: Decimal
    status: BookingStatusEnum
