"""Who may act on a booking."""

from __future__ import annotations

from tutormarket.modules.booking.models import Booking
from tutormarket.modules.identity.context import AuthContext
from tutormarket.shared.exceptions import UnauthorizedException


def is_participant(booking: Booking, actor: AuthContext) -> bool:
    return actor.user_id in (booking.student_id, booking.tutor_id)


def ensure_participant(booking: Booking, actor: AuthContext) -> None:
    """Reject callers that are neither the student nor the tutor of the booking."""
    if not is_participant(booking, actor):
        raise UnauthorizedException("You are not a participant of this booking")


def ensure_participant_or_admin(booking: Booking, actor: AuthContext) -> None:
    if not actor.is_admin:
        ensure_participant(booking, actor)
