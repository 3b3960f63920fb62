"""Booking API routers."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from tutormarket.core.enums import BookingStatusEnum
from tutormarket.modules.booking.schemas import (
    BookingActionResult,
    BookingCancelRequest,
    BookingCreate,
    BookingPaymentStatusRead,
    BookingRead,
    BookingRescheduleRequest,
    BookingRespondRequest,
    BookingStatusUpdate,
    InstantBookingCreate,
)
from tutormarket.modules.booking.service import BookingService, get_booking_service
from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.identity.service import get_current_user
from tutormarket.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/bookings", tags=["booking"])
tutor_router = APIRouter(prefix="/tutor/bookings", tags=["booking"])


@router.post("", response_model=BookingRead)
async def create_booking(
    payload: BookingCreate,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthContext = Depends(get_current_user),
) -> BookingRead:
    """Request a scheduled session."""
    booking = await service.create_booking(payload, current_user)
    return BookingRead.model_validate(booking)


@router.post("/instant", response_model=BookingRead)
async def create_instant_booking(
    payload: InstantBookingCreate,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthContext = Depends(get_current_user),
) -> BookingRead:
    booking = await service.create_instant_booking(payload, current_user)
    return BookingRead.model_validate(booking)


@router.get("/my", response_model=Page[BookingRead])
async def list_my_bookings(
    status: BookingStatusEnum | None = Query(default=None),
    pagination=Depends(get_pagination_params),
    service: BookingService = Depends(get_booking_service),
    current_user: AuthContext = Depends(get_current_user),
) -> Page[BookingRead]:
    """List current user's bookings."""
    items, total = await service.list_bookings(current_user, status, pagination.limit, pagination.offset)
    serialized = [BookingRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthContext = Depends(get_current_user),
) -> BookingRead:
    booking = await service.get_booking(booking_id, current_user)
    return BookingRead.model_validate(booking)


@router.put("/{booking_id}/status", response_model=BookingRead)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthContext = Depends(get_current_user),
) -> BookingRead:
    """Move a booking to another status as one of its participants."""
    booking = await service.update_status(booking_id, payload.status, current_user)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/respond", response_model=BookingRead)
async def respond_to_booking(
    booking_id: UUID,
    payload: BookingRespondRequest,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthContext = Depends(get_current_user),
) -> BookingRead:
    """Accept or decline a booking request as its tutor."""
    booking = await service.respond(booking_id, payload, current_user)
    return BookingRead.model_validate(booking)


@router.get("/{booking_id}/verify-payment", response_model=BookingPaymentStatusRead)
async def verify_booking_payment(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthContext = Depends(get_current_user),
) -> BookingPaymentStatusRead:
    return await service.payment_status(booking_id, current_user)


@tutor_router.put("/{booking_id}/cancel", response_model=BookingActionResult)
async def cancel_booking_as_tutor(
    booking_id: UUID,
    payload: BookingCancelRequest | None = None,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthContext = Depends(get_current_user),
) -> BookingActionResult:
    """Cancel one of the caller's sessions as its tutor."""
    reason = payload.reason if payload is not None else None
    booking = await service.cancel_by_tutor(booking_id, reason, current_user)
    return BookingActionResult(
        message="Session cancelled successfully",
        booking=BookingRead.model_validate(booking),
    )


@router.put("/{booking_id}/reschedule", response_model=BookingActionResult)
async def reschedule_booking(
    booking_id: UUID,
    payload: BookingRescheduleRequest,
    service: BookingService = Depends(get_booking_service),
    current_user: AuthContext = Depends(get_current_user),
) -> BookingActionResult:
    """Move a session to a new time as its tutor."""
    booking = await service.reschedule(booking_id, payload.new_scheduled_at, payload.reason, current_user)
    return BookingActionResult(
        message="Session rescheduled successfully",
        booking=BookingRead.model_validate(booking),
    )
