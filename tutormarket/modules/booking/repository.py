"""Booking repository layer."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.enums import BookingStatusEnum, PaymentGatewayEnum, RoleEnum
from tutormarket.modules.booking.models import Booking
from tutormarket.shared.utils import utc_now


class BookingRepository:
    """DB operations for booking domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_booking(
        self,
        student_id: UUID,
        tutor_id: UUID,
        scheduled_at: datetime,
        duration_minutes: int,
        price: Decimal,
        currency: str,
        is_instant: bool,
        notes: str | None,
    ) -> Booking:
        booking = Booking(
            student_id=student_id,
            tutor_id=tutor_id,
            scheduled_at=scheduled_at,
            duration_minutes=duration_minutes,
            price=price,
            currency=currency,
            is_instant=is_instant,
            notes=notes,
            status=BookingStatusEnum.PENDING,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_booking_by_id(self, booking_id: UUID) -> Booking | None:
        return await self.session.get(Booking, booking_id)

    async def get_booking_for_update(self, booking_id: UUID) -> Booking | None:
        """Load booking holding a row lock until the transaction ends."""
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def get_booking_by_payment_reference(
        self,
        reference: str,
        *,
        for_update: bool = False,
    ) -> Booking | None:
        stmt = select(Booking).where(Booking.payment_reference == reference)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return await self.session.scalar(stmt)

    async def list_bookings(
        self,
        user_id: UUID,
        role: RoleEnum,
        status: BookingStatusEnum | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        base_stmt: Select[tuple[Booking]] = select(Booking)

        if role == RoleEnum.STUDENT:
            base_stmt = base_stmt.where(Booking.student_id == user_id)
        elif role == RoleEnum.TUTOR:
            base_stmt = base_stmt.where(Booking.tutor_id == user_id)
        if status is not None:
            base_stmt = base_stmt.where(Booking.status == status)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(Booking.scheduled_at.desc()).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return items, total

    async def list_pending_paid(self, limit: int, offset: int) -> tuple[list[Booking], int]:
        """Bookings stuck in PENDING although a payment was recorded."""
        base_stmt: Select[tuple[Booking]] = select(Booking).where(
            Booking.status == BookingStatusEnum.PENDING,
            Booking.paid_at.is_not(None),
        )
        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(Booking.paid_at.asc()).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return items, total

    async def transition_status(
        self,
        booking_id: UUID,
        expected_status: BookingStatusEnum,
        target_status: BookingStatusEnum,
        **values: Any,
    ) -> Booking | None:
        """Conditionally move booking to target status.

        Returns None when the row is no longer in ``expected_status``, meaning a
        concurrent transition got there first.
        """
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == expected_status)
            .values(status=target_status, updated_at=utc_now(), **values)
            .returning(Booking)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def set_payment_details(
        self,
        booking: Booking,
        *,
        payment_method: PaymentGatewayEnum,
        payment_reference: str | None,
        paid_at: datetime | None = None,
    ) -> Booking:
        booking.payment_method = payment_method
        if payment_reference is not None:
            booking.payment_reference = payment_reference
        if paid_at is not None:
            booking.paid_at = paid_at
        await self.session.flush()
        return booking

    async def find_conflicting_booking(
        self,
        tutor_id: UUID,
        window_start: datetime,
        window_end: datetime,
        statuses: frozenset[BookingStatusEnum],
        exclude_booking_id: UUID | None = None,
    ) -> Booking | None:
        """First booking of the tutor scheduled inside ``[window_start, window_end]``."""
        stmt = select(Booking).where(
            Booking.tutor_id == tutor_id,
            Booking.scheduled_at >= window_start,
            Booking.scheduled_at <= window_end,
            Booking.status.in_(statuses),
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        return await self.session.scalar(stmt.order_by(Booking.scheduled_at.asc()).limit(1))

    async def reschedule_booking(
        self,
        booking_id: UUID,
        expected_status: BookingStatusEnum,
        scheduled_at: datetime,
        status: BookingStatusEnum,
        **values: Any,
    ) -> Booking | None:
        """Move booking to a new time unless its status changed meanwhile."""
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == expected_status)
            .values(scheduled_at=scheduled_at, status=status, updated_at=utc_now(), **values)
            .returning(Booking)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)
