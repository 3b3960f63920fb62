"""Admin business logic layer."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.database import get_db_session
from tutormarket.core.enums import BookingStatusEnum, NotificationTypeEnum
from tutormarket.modules.audit.repository import AuditRepository
from tutormarket.modules.audit.service import ADMIN_BOOKING_FIX_STATUS, AuditService
from tutormarket.modules.booking.models import Booking
from tutormarket.modules.booking.repository import BookingRepository
from tutormarket.modules.booking.transitions import apply_transition
from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.identity.service import get_current_user
from tutormarket.modules.notifications.repository import NotificationsRepository
from tutormarket.modules.notifications.service import NotificationEmitter
from tutormarket.shared.exceptions import BusinessRuleException, NotFoundException, UnauthorizedException
from tutormarket.shared.utils import utc_now

logger = logging.getLogger(__name__)


class AdminService:
    """Admin repair operations on bookings."""

    def __init__(
        self,
        booking_repository: BookingRepository,
        audit_service: AuditService,
        notifier: NotificationEmitter,
    ) -> None:
        self.booking_repository = booking_repository
        self.audit_service = audit_service
        self.notifier = notifier

    async def fix_booking_status(self, booking_id: UUID, actor: AuthContext) -> Booking:
        """Confirm a booking that was paid but never left PENDING."""
        if not actor.is_admin:
            raise UnauthorizedException("Only admin can fix booking status")

        booking = await self.booking_repository.get_booking_for_update(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        if booking.status != BookingStatusEnum.PENDING or booking.paid_at is None:
            raise BusinessRuleException("Booking is not eligible for fix (must be PENDING and paidAt set)")

        previous_status = booking.status
        updated = await apply_transition(
            self.booking_repository,
            booking,
            BookingStatusEnum.CONFIRMED,
            trigger="admin_fix",
            now=utc_now(),
        )
        await self.audit_service.record(
            ADMIN_BOOKING_FIX_STATUS,
            entity_type="booking",
            entity_id=updated.id,
            payload={
                "from_status": str(previous_status),
                "to_status": str(updated.status),
                "paid_at": updated.paid_at.isoformat() if updated.paid_at else None,
                "payment_reference": updated.payment_reference,
            },
            actor=actor,
        )
        logger.info("Admin %s fixed booking %s status", actor.user_id, updated.id)

        await self.notifier.notify(
            updated.student_id,
            NotificationTypeEnum.BOOKING_CONFIRMED,
            "Booking confirmed",
            "Your paid booking has been confirmed.",
            {"booking_id": str(updated.id)},
        )
        return updated

    async def list_inconsistent_bookings(
        self,
        actor: AuthContext,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        """Bookings eligible for :meth:`fix_booking_status`."""
        if not actor.is_admin:
            raise UnauthorizedException("Only admin can list inconsistent bookings")
        return await self.booking_repository.list_pending_paid(limit=limit, offset=offset)


async def get_admin_service(session: AsyncSession = Depends(get_db_session)) -> AdminService:
    """Dependency provider for admin service."""
    return AdminService(
        booking_repository=BookingRepository(session),
        audit_service=AuditService(AuditRepository(session)),
        notifier=NotificationEmitter(NotificationsRepository(session)),
    )


def get_admin_caller(current_user: AuthContext = Depends(get_current_user)) -> AuthContext:
    """Resolve the caller of an admin route, rejecting non-admins with 401 ahead of body validation."""
    if not current_user.is_admin:
        raise UnauthorizedException("Admin access required")
    return current_user
