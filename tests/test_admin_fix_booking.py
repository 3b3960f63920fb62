from __future__ import annotations

from uuid import uuid4

import pytest

import tutormarket.modules.admin.service as admin_service_module
from tutormarket.core.enums import BookingStatusEnum, NotificationTypeEnum
from tutormarket.modules.audit.service import ADMIN_BOOKING_FIX_STATUS
from tutormarket.shared.exceptions import BusinessRuleException, NotFoundException, UnauthorizedException

from conftest import FIXED_NOW


@pytest.fixture(autouse=True)
def _frozen_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(admin_service_module, "utc_now", lambda: FIXED_NOW)


@pytest.mark.asyncio
async def test_fix_confirms_paid_pending_booking_and_writes_audit(harness) -> None:
    booking = harness.booking(paid_at=FIXED_NOW, payment_reference="flw_ref_1")

    updated = await harness.admin_service().fix_booking_status(booking.id, harness.admin)

    assert updated.status == BookingStatusEnum.CONFIRMED
    assert updated.confirmed_at == FIXED_NOW
    assert harness.bookings.locked == [booking.id]

    [entry] = harness.audit.logs
    assert entry["action"] == ADMIN_BOOKING_FIX_STATUS
    assert entry["actor_id"] == harness.admin.user_id
    assert entry["entity_id"] == str(booking.id)
    assert entry["payload"]["from_status"] == "pending"
    assert entry["payload"]["to_status"] == "confirmed"

    [notification] = harness.notifications.for_user(harness.student.user_id)
    assert notification["type"] == NotificationTypeEnum.BOOKING_CONFIRMED


@pytest.mark.asyncio
async def test_fix_rejects_unpaid_booking(harness) -> None:
    booking = harness.booking()

    with pytest.raises(BusinessRuleException) as exc:
        await harness.admin_service().fix_booking_status(booking.id, harness.admin)

    assert "not eligible" in exc.value.message
    assert booking.status == BookingStatusEnum.PENDING
    assert harness.audit.logs == []


@pytest.mark.asyncio
async def test_fix_rejects_already_confirmed_booking(harness) -> None:
    booking = harness.booking(status=BookingStatusEnum.CONFIRMED, paid_at=FIXED_NOW)

    with pytest.raises(BusinessRuleException):
        await harness.admin_service().fix_booking_status(booking.id, harness.admin)
    assert harness.audit.logs == []
    assert harness.notifications.created == []


@pytest.mark.asyncio
async def test_fix_requires_admin(harness) -> None:
    booking = harness.booking(paid_at=FIXED_NOW)

    for actor in (harness.student, harness.tutor):
        with pytest.raises(UnauthorizedException):
            await harness.admin_service().fix_booking_status(booking.id, actor)

    assert booking.status == BookingStatusEnum.PENDING
    assert harness.bookings.locked == []


@pytest.mark.asyncio
async def test_fix_unknown_booking_is_not_found(harness) -> None:
    with pytest.raises(NotFoundException):
        await harness.admin_service().fix_booking_status(uuid4(), harness.admin)


@pytest.mark.asyncio
async def test_inconsistent_listing_returns_only_paid_pending(harness) -> None:
    stuck = harness.booking(paid_at=FIXED_NOW)
    harness.booking()
    harness.booking(status=BookingStatusEnum.CONFIRMED, paid_at=FIXED_NOW)

    items, total = await harness.admin_service().list_inconsistent_bookings(harness.admin, 20, 0)

    assert total == 1
    assert [item.id for item in items] == [stuck.id]
    with pytest.raises(UnauthorizedException):
        await harness.admin_service().list_inconsistent_bookings(harness.tutor, 20, 0)
