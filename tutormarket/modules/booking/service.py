"""Booking business logic layer."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.config import get_settings
from tutormarket.core.database import get_db_session
from tutormarket.core.enums import BookingStatusEnum, NotificationTypeEnum, PaymentGatewayEnum, RoleEnum
from tutormarket.core.metrics import record_booking_transition
from tutormarket.modules.booking.models import Booking
from tutormarket.modules.booking.policies import ensure_participant, ensure_participant_or_admin
from tutormarket.modules.booking.repository import BookingRepository
from tutormarket.modules.booking.schemas import (
    BookingCreate,
    BookingPaymentStatusRead,
    BookingRespondRequest,
    InstantBookingCreate,
)
from tutormarket.modules.booking.state_machine import (
    ACTIVE_STATUSES,
    RESCHEDULABLE_STATUSES,
    is_terminal,
    status_after_reschedule,
)
from tutormarket.modules.booking.transitions import apply_transition
from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.identity.repository import IdentityRepository
from tutormarket.modules.notifications.repository import NotificationsRepository
from tutormarket.modules.notifications.service import NotificationEmitter
from tutormarket.modules.payments.reconciliation import PaymentReconciliationService
from tutormarket.modules.payments.repository import PaymentsRepository
from tutormarket.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
)
from tutormarket.shared.utils import ensure_utc, utc_now

settings = get_settings()


def instant_reference(booking_id: UUID) -> str:
    return f"instant:{booking_id}"


class BookingService:
    """Booking lifecycle operations driven by students and tutors."""

    def __init__(
        self,
        repository: BookingRepository,
        identity_repository: IdentityRepository,
        payments_repository: PaymentsRepository,
        reconciliation: PaymentReconciliationService,
        notifier: NotificationEmitter,
    ) -> None:
        self.repository = repository
        self.identity_repository = identity_repository
        self.payments_repository = payments_repository
        self.reconciliation = reconciliation
        self.notifier = notifier

    async def _get_booking(self, booking_id: UUID) -> Booking:
        booking = await self.repository.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        return booking

    @staticmethod
    def _conflict_window() -> timedelta:
        return timedelta(minutes=settings.booking_conflict_window_minutes)

    async def _ensure_tutor_exists(self, tutor_id: UUID) -> None:
        tutor = await self.identity_repository.get_user_by_id(tutor_id)
        if tutor is None or tutor.role != RoleEnum.TUTOR or not tutor.is_active:
            raise NotFoundException("Tutor not found")

    async def create_booking(self, payload: BookingCreate, actor: AuthContext) -> Booking:
        """Request a scheduled session with a tutor."""
        if not actor.is_student:
            raise ForbiddenException("Only students can book sessions")
        scheduled_at = ensure_utc(payload.scheduled_at)
        if scheduled_at <= utc_now():
            raise BusinessRuleException("Booking time must be in the future")
        await self._ensure_tutor_exists(payload.tutor_id)

        booking = await self.repository.create_booking(
            student_id=actor.user_id,
            tutor_id=payload.tutor_id,
            scheduled_at=scheduled_at,
            duration_minutes=payload.duration_minutes or settings.session_duration_minutes,
            price=settings.session_price,
            currency=settings.default_currency,
            is_instant=False,
            notes=payload.notes,
        )
        await self.notifier.notify(
            payload.tutor_id,
            NotificationTypeEnum.BOOKING_REQUESTED,
            "New booking request",
            f"{actor.name} requested a session on {scheduled_at:%Y-%m-%d %H:%M} UTC.",
            {"booking_id": str(booking.id)},
        )
        return booking

    async def create_instant_booking(self, payload: InstantBookingCreate, actor: AuthContext) -> Booking:
        """Ask a tutor for a session starting now."""
        if not actor.is_student:
            raise ForbiddenException("Only students can book sessions")
        await self._ensure_tutor_exists(payload.tutor_id)

        now = utc_now()
        conflict = await self.repository.find_conflicting_booking(
            payload.tutor_id,
            now,
            now + self._conflict_window(),
            ACTIVE_STATUSES,
        )
        if conflict is not None:
            raise BusinessRuleException("Tutor has a conflicting booking")

        booking = await self.repository.create_booking(
            student_id=actor.user_id,
            tutor_id=payload.tutor_id,
            scheduled_at=now,
            duration_minutes=settings.session_duration_minutes,
            price=settings.instant_booking_price,
            currency=settings.default_currency,
            is_instant=True,
            notes=payload.notes,
        )
        await self.notifier.notify(
            payload.tutor_id,
            NotificationTypeEnum.INSTANT_BOOKING_REQUEST,
            "Instant session request",
            f"{actor.name} wants to start a session now.",
            {"booking_id": str(booking.id)},
        )
        return booking

    async def get_booking(self, booking_id: UUID, actor: AuthContext) -> Booking:
        booking = await self._get_booking(booking_id)
        ensure_participant_or_admin(booking, actor)
        return booking

    async def list_bookings(
        self,
        actor: AuthContext,
        status: BookingStatusEnum | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        """List bookings visible to the caller."""
        return await self.repository.list_bookings(
            user_id=actor.user_id,
            role=actor.role,
            status=status,
            limit=limit,
            offset=offset,
        )

    async def update_status(
        self,
        booking_id: UUID,
        target: BookingStatusEnum,
        actor: AuthContext,
    ) -> Booking:
        """Participant-requested status change, checked against the transition table."""
        booking = await self._get_booking(booking_id)
        ensure_participant(booking, actor)

        # A student may only confirm a pending booking that has already been paid for.
        if (
            booking.status == BookingStatusEnum.PENDING
            and target == BookingStatusEnum.CONFIRMED
            and actor.user_id != booking.tutor_id
            and booking.paid_at is None
        ):
            raise BusinessRuleException("Only the tutor can confirm an unpaid pending booking")

        updated = await apply_transition(
            self.repository,
            booking,
            target,
            trigger="participant",
            now=utc_now(),
        )
        counterparty_id = updated.tutor_id if actor.user_id == updated.student_id else updated.student_id
        await self.notifier.notify(
            counterparty_id,
            NotificationTypeEnum.BOOKING_STATUS_CHANGED,
            "Booking updated",
            f"{actor.name} changed the booking status to {target}.",
            {"booking_id": str(updated.id), "status": str(target)},
        )
        return updated

    async def respond(
        self,
        booking_id: UUID,
        payload: BookingRespondRequest,
        actor: AuthContext,
    ) -> Booking:
        """Tutor accepts or declines a pending booking."""
        booking = await self._get_booking(booking_id)
        if booking.tutor_id != actor.user_id:
            raise ForbiddenException("Only the booking's tutor can respond to it")
        if booking.status != BookingStatusEnum.PENDING:
            raise BusinessRuleException(f"Booking is already {booking.status}")

        if payload.action == "decline":
            updated = await apply_transition(
                self.repository,
                booking,
                BookingStatusEnum.CANCELLED,
                trigger="tutor_response",
                now=utc_now(),
                cancellation_reason=payload.reason,
            )
            await self.notifier.notify(
                updated.student_id,
                NotificationTypeEnum.SESSION_CANCELLED,
                "Booking declined",
                f"{actor.name} declined your booking request.",
                {"booking_id": str(updated.id), "reason": payload.reason},
            )
            return updated

        updated = await apply_transition(
            self.repository,
            booking,
            BookingStatusEnum.CONFIRMED,
            trigger="tutor_response",
            now=utc_now(),
        )
        if updated.is_instant:
            result = await self.reconciliation.record_successful_charge(
                gateway=PaymentGatewayEnum.MANUAL,
                transaction_reference=instant_reference(updated.id),
                amount=updated.price,
                currency=updated.currency,
                booking_id=updated.id,
                trigger="instant_accept",
                notify=False,
            )
            updated = result.booking
            await self.notifier.notify(
                updated.student_id,
                NotificationTypeEnum.INSTANT_BOOKING_ACCEPTED,
                "Instant session accepted",
                f"{actor.name} accepted your instant session. Join now!",
                {"booking_id": str(updated.id)},
            )
        else:
            await self.notifier.notify(
                updated.student_id,
                NotificationTypeEnum.BOOKING_CONFIRMED,
                "Booking confirmed",
                f"{actor.name} confirmed your session.",
                {"booking_id": str(updated.id)},
            )
        return updated

    async def cancel_by_tutor(self, booking_id: UUID, reason: str | None, actor: AuthContext) -> Booking:
        """Tutor cancels one of their sessions; the student is told why."""
        if not actor.is_tutor:
            raise UnauthorizedException("Only tutors can cancel sessions here")
        booking = await self.repository.get_booking_by_id(booking_id)
        if booking is None or booking.tutor_id != actor.user_id:
            raise NotFoundException("Booking not found")
        if is_terminal(booking.status):
            raise BusinessRuleException(f"Cannot cancel a {booking.status} booking")

        cancellation_reason = reason or "Cancelled by tutor"
        updated = await apply_transition(
            self.repository,
            booking,
            BookingStatusEnum.CANCELLED,
            trigger="tutor_cancel",
            now=utc_now(),
            cancellation_reason=cancellation_reason,
        )
        await self.notifier.notify(
            updated.student_id,
            NotificationTypeEnum.SESSION_CANCELLED,
            "Session cancelled",
            (
                f"Your session with {actor.name} on {updated.scheduled_at:%Y-%m-%d %H:%M} UTC "
                f"has been cancelled. Reason: {cancellation_reason}"
            ),
            {
                "booking_id": str(updated.id),
                "tutor_name": actor.name,
                "scheduled_at": updated.scheduled_at.isoformat(),
                "reason": cancellation_reason,
            },
        )
        return updated

    async def reschedule(
        self,
        booking_id: UUID,
        new_scheduled_at: datetime,
        reason: str | None,
        actor: AuthContext,
    ) -> Booking:
        """Tutor moves a session to a new time.

        An unpaid confirmed booking returns to PENDING so the student can
        accept the new time; a paid one keeps its status.
        """
        booking = await self._get_booking(booking_id)
        if booking.tutor_id != actor.user_id:
            raise UnauthorizedException("Only the booking's tutor can reschedule it")
        if booking.status not in RESCHEDULABLE_STATUSES:
            raise BusinessRuleException(f"Cannot reschedule a {booking.status} booking")

        new_time = ensure_utc(new_scheduled_at)
        if new_time <= utc_now():
            raise BusinessRuleException("New scheduled time must be in the future")

        window = self._conflict_window()
        conflict = await self.repository.find_conflicting_booking(
            booking.tutor_id,
            new_time - window,
            new_time + window,
            ACTIVE_STATUSES,
            exclude_booking_id=booking.id,
        )
        if conflict is not None:
            raise BusinessRuleException("You have a conflicting booking at this time")

        previous_time = booking.scheduled_at
        previous_status = booking.status
        target = status_after_reschedule(previous_status, paid=booking.paid_at is not None)
        values = {"confirmed_at": None} if target != previous_status else {}
        updated = await self.repository.reschedule_booking(
            booking.id,
            previous_status,
            new_time,
            target,
            **values,
        )
        if updated is None:
            raise ConflictException("Booking was modified concurrently, reload and retry")
        if target != previous_status:
            record_booking_transition(str(previous_status), str(target), "reschedule")

        reschedule_reason = reason or "Tutor requested reschedule"
        await self.notifier.notify(
            updated.student_id,
            NotificationTypeEnum.SESSION_RESCHEDULED,
            "Session rescheduled",
            f"{actor.name} has rescheduled your session to {new_time:%Y-%m-%d %H:%M} UTC.",
            {
                "booking_id": str(updated.id),
                "tutor_name": actor.name,
                "old_scheduled_at": ensure_utc(previous_time).isoformat(),
                "new_scheduled_at": new_time.isoformat(),
                "reason": reschedule_reason,
            },
        )
        return updated

    async def payment_status(self, booking_id: UUID, actor: AuthContext) -> BookingPaymentStatusRead:
        """Payment summary of a booking for its participants."""
        booking = await self._get_booking(booking_id)
        ensure_participant(booking, actor)

        payment = await self.payments_repository.get_latest_paid_payment(booking.id)
        return BookingPaymentStatusRead(
            is_paid=booking.paid_at is not None,
            payment_method=booking.payment_method,
            payment_reference=booking.payment_reference,
            paid_at=booking.paid_at,
            amount=payment.amount if payment is not None else Decimal("0"),
            status=booking.status,
        )


async def get_booking_service(session: AsyncSession = Depends(get_db_session)) -> BookingService:
    """Dependency provider for booking service."""
    booking_repository = BookingRepository(session)
    payments_repository = PaymentsRepository(session)
    notifier = NotificationEmitter(NotificationsRepository(session))
    return BookingService(
        repository=booking_repository,
        identity_repository=IdentityRepository(session),
        payments_repository=payments_repository,
        reconciliation=PaymentReconciliationService(booking_repository, payments_repository, notifier),
        notifier=notifier,
    )
