"""Booking status transition rules.

Every trigger (participant action, gateway webhook, admin fix, tutor
cancellation) goes through :func:`validate_transition` before writing.
A tutor reschedule is the exception and is settled by
:func:`status_after_reschedule`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from tutormarket.core.enums import BookingStatusEnum
from tutormarket.shared.exceptions import BusinessRuleException

ALLOWED_TRANSITIONS: dict[BookingStatusEnum, frozenset[BookingStatusEnum]] = {
    BookingStatusEnum.PENDING: frozenset({BookingStatusEnum.CONFIRMED, BookingStatusEnum.CANCELLED}),
    BookingStatusEnum.CONFIRMED: frozenset(
        {BookingStatusEnum.IN_PROGRESS, BookingStatusEnum.COMPLETED, BookingStatusEnum.CANCELLED},
    ),
    BookingStatusEnum.IN_PROGRESS: frozenset({BookingStatusEnum.COMPLETED, BookingStatusEnum.CANCELLED}),
    BookingStatusEnum.COMPLETED: frozenset(),
    BookingStatusEnum.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


class InvalidTransitionException(BusinessRuleException):
    """Raised when a booking cannot move from its current status to the target."""

    code = "invalid_transition"

    def __init__(self, current: BookingStatusEnum, target: BookingStatusEnum) -> None:
        if current in TERMINAL_STATUSES:
            message = f"Booking is already {current} and cannot change status"
        else:
            message = f"Invalid booking status transition: {current} -> {target}"
        super().__init__(message)
        self.current = current
        self.target = target


def is_terminal(status: BookingStatusEnum) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: BookingStatusEnum, target: BookingStatusEnum) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(current: BookingStatusEnum, target: BookingStatusEnum) -> None:
    """Raise InvalidTransitionException unless current -> target is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionException(current, target)


RESCHEDULABLE_STATUSES = frozenset({BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED})

# Status of the active bookings that occupy a tutor's time.
ACTIVE_STATUSES = frozenset(
    {BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED, BookingStatusEnum.IN_PROGRESS},
)


def status_after_reschedule(current: BookingStatusEnum, *, paid: bool) -> BookingStatusEnum:
    """Status a booking lands in when its tutor moves it to a new time.

    An unpaid confirmed booking goes back to PENDING for the student to
    accept the new time. A paid booking keeps its status.
    """
    if current not in RESCHEDULABLE_STATUSES:
        raise InvalidTransitionException(current, BookingStatusEnum.PENDING)
    if current == BookingStatusEnum.CONFIRMED and not paid:
        return BookingStatusEnum.PENDING
    return current


def transition_timestamps(target: BookingStatusEnum, now: datetime) -> dict[str, Any]:
    """Column values stamped alongside a status change."""
    if target == BookingStatusEnum.CONFIRMED:
        return {"confirmed_at": now}
    if target == BookingStatusEnum.CANCELLED:
        return {"canceled_at": now}
    if target == BookingStatusEnum.COMPLETED:
        return {"completed_at": now}
    return {}
