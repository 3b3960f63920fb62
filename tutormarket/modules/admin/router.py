"""Admin API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tutormarket.modules.admin.schemas import BookingFixRequest, BookingFixResult
from tutormarket.modules.admin.service import AdminService, get_admin_caller, get_admin_service
from tutormarket.modules.booking.schemas import BookingRead
from tutormarket.modules.identity.context import AuthContext
from tutormarket.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/bookings/fix-status", response_model=BookingFixResult)
async def fix_booking_status(
    payload: BookingFixRequest,
    service: AdminService = Depends(get_admin_service),
    current_user: AuthContext = Depends(get_admin_caller),
) -> BookingFixResult:
    """Promote a paid PENDING booking to CONFIRMED."""
    booking = await service.fix_booking_status(payload.booking_id, current_user)
    return BookingFixResult(booking=BookingRead.model_validate(booking))


@router.get("/bookings/inconsistent", response_model=Page[BookingRead])
async def list_inconsistent_bookings(
    pagination=Depends(get_pagination_params),
    service: AdminService = Depends(get_admin_service),
    current_user: AuthContext = Depends(get_admin_caller),
) -> Page[BookingRead]:
    """List bookings that are paid but still pending."""
    items, total = await service.list_inconsistent_bookings(current_user, pagination.limit, pagination.offset)
    serialized = [BookingRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)
