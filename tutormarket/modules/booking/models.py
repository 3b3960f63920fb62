"""Booking ORM models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tutormarket.core.database import Base, BaseModelMixin
from tutormarket.core.enums import BookingStatusEnum, PaymentGatewayEnum

if TYPE_CHECKING:
    from tutormarket.modules.identity.models import User
    from tutormarket.modules.payments.models import Payment


class Booking(BaseModelMixin, Base):
    """Tutoring session request between a student and a tutor."""

    __tablename__ = "bookings"

    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tutor_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    is_instant: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[BookingStatusEnum] = mapped_column(
        SAEnum(BookingStatusEnum, name="booking_status_enum", native_enum=False),
        default=BookingStatusEnum.PENDING,
        nullable=False,
        index=True,
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_method: Mapped[PaymentGatewayEnum | None] = mapped_column(
        SAEnum(PaymentGatewayEnum, name="payment_gateway_enum", native_enum=False),
        nullable=True,
    )
    payment_reference: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)

    student: Mapped["User"] = relationship(foreign_keys=[student_id])
    tutor: Mapped["User"] = relationship(foreign_keys=[tutor_id])
    payments: Mapped[list["Payment"]] = relationship(back_populates="booking")
