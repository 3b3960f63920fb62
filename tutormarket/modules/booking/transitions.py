"""Persisting booking status changes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from tutormarket.core.enums import BookingStatusEnum
from tutormarket.core.metrics import record_booking_transition
from tutormarket.modules.booking.models import Booking
from tutormarket.modules.booking.repository import BookingRepository
from tutormarket.modules.booking.state_machine import transition_timestamps, validate_transition
from tutormarket.shared.exceptions import ConflictException

logger = logging.getLogger(__name__)


async def apply_transition(
    repository: BookingRepository,
    booking: Booking,
    target: BookingStatusEnum,
    *,
    trigger: str,
    now: datetime,
    **values: Any,
) -> Booking:
    """Validate and write ``booking.status -> target`` as a conditional update.

    Raises ConflictException when another writer moved the booking first.
    """
    current = booking.status
    validate_transition(current, target)

    updated = await repository.transition_status(
        booking.id,
        current,
        target,
        **{**transition_timestamps(target, now), **values},
    )
    if updated is None:
        logger.info(
            "Booking %s transition %s -> %s lost a race (trigger=%s)",
            booking.id,
            current,
            target,
            trigger,
        )
        raise ConflictException("Booking was modified concurrently, reload and retry")

    record_booking_transition(str(current), str(target), trigger)
    logger.info("Booking %s moved %s -> %s (trigger=%s)", booking.id, current, target, trigger)
    return updated
