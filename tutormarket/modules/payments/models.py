"""Payments ORM models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Enum as SAEnum, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tutormarket.core.database import Base, BaseModelMixin
from tutormarket.core.enums import PaymentGatewayEnum, PaymentStatusEnum

if TYPE_CHECKING:
    from tutormarket.modules.booking.models import Booking


class Payment(BaseModelMixin, Base):
    """Money movement attached to a booking.

    Rows are created pending at checkout (or directly paid by a confirmed
    charge) and afterwards only their status changes.
    """

    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("gateway", "transaction_reference"),)

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    booking_id: Mapped[UUID] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[PaymentStatusEnum] = mapped_column(
        SAEnum(PaymentStatusEnum, name="payment_status_enum", native_enum=False),
        default=PaymentStatusEnum.PENDING,
        nullable=False,
        index=True,
    )
    gateway: Mapped[PaymentGatewayEnum] = mapped_column(
        SAEnum(PaymentGatewayEnum, name="payment_gateway_enum", native_enum=False),
        nullable=False,
    )
    transaction_reference: Mapped[str] = mapped_column(String(128), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    booking: Mapped["Booking"] = relationship(back_populates="payments")


class Wallet(BaseModelMixin, Base):
    """Prepaid balance a student can spend on bookings."""

    __tablename__ = "wallets"
    __table_args__ = (CheckConstraint("balance >= 0", name="balance_non_negative"),)

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
