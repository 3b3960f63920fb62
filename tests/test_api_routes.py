from __future__ import annotations

import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from tutormarket.core.config import Settings
from tutormarket.core.enums import BookingStatusEnum, PaymentGatewayEnum
from tutormarket.main import app
from tutormarket.modules.admin.service import get_admin_service
from tutormarket.modules.booking.service import get_booking_service
from tutormarket.modules.identity.service import get_current_user
from tutormarket.modules.payments.gateways import GatewayRegistry
from tutormarket.modules.payments.webhooks import get_webhook_service

from conftest import FIXED_NOW

API = "/api/v1"


def _paystack_registry() -> GatewayRegistry:
    def api(request: httpx.Request) -> httpx.Response:
        reference = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(
            200,
            json={"status": True, "data": {"status": "success", "reference": reference, "amount": 2500}},
        )

    settings = Settings(_env_file=None, paystack_secret_key="sk_test_paystack")
    return GatewayRegistry(settings, transport=httpx.MockTransport(api))


@pytest_asyncio.fixture()
async def client(harness) -> AsyncIterator[httpx.AsyncClient]:
    registry = _paystack_registry()
    harness.registry = registry
    harness.caller = harness.student
    app.dependency_overrides[get_webhook_service] = lambda: harness.webhook_service(registry)
    app.dependency_overrides[get_admin_service] = harness.admin_service
    app.dependency_overrides[get_booking_service] = harness.booking_service
    app.dependency_overrides[get_current_user] = lambda: harness.caller
    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as api_client:
            yield api_client
    finally:
        app.dependency_overrides.clear()


def _signed(harness, payload: dict) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    signature = harness.registry.get(PaymentGatewayEnum.PAYSTACK).signature_for(body)
    return body, {"x-paystack-signature": signature, "content-type": "application/json"}


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_returns_400(client, harness) -> None:
    booking = harness.booking(payment_reference="booking_ref_1")

    response = await client.post(
        f"{API}/payments/webhooks/paystack",
        content=b'{"event": "charge.success", "data": {"reference": "booking_ref_1"}}',
        headers={"x-paystack-signature": "bogus"},
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_signature"
    assert booking.status == BookingStatusEnum.PENDING


@pytest.mark.asyncio
async def test_webhook_acknowledges_processed_and_replayed_delivery(client, harness) -> None:
    booking = harness.booking(payment_reference="booking_ref_1")
    body, headers = _signed(harness, {"event": "charge.success", "data": {"reference": "booking_ref_1"}})

    first = await client.post(f"{API}/payments/webhooks/paystack", content=body, headers=headers)
    second = await client.post(f"{API}/payments/webhooks/paystack", content=body, headers=headers)

    assert first.status_code == 200
    assert first.json() == {"received": True, "duplicate": False}
    assert second.json() == {"received": True, "duplicate": True}
    assert booking.status == BookingStatusEnum.CONFIRMED
    assert len(harness.payments.paid_for(booking.id)) == 1


@pytest.mark.asyncio
async def test_unmatched_webhook_returns_200_with_matched_false(client, harness) -> None:
    body, headers = _signed(harness, {"event": "charge.success", "data": {"reference": "ghost_ref"}})

    response = await client.post(f"{API}/payments/webhooks/paystack", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"received": True, "matched": False}


@pytest.mark.asyncio
async def test_admin_fix_requires_booking_id(client, harness) -> None:
    harness.caller = harness.admin

    response = await client.post(f"{API}/admin/bookings/fix-status", json={})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


@pytest.mark.asyncio
async def test_admin_fix_confirms_stuck_booking(client, harness) -> None:
    harness.caller = harness.admin
    booking = harness.booking(paid_at=FIXED_NOW)

    response = await client.post(f"{API}/admin/bookings/fix-status", json={"booking_id": str(booking.id)})

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["booking"]["status"] == "confirmed"


@pytest.mark.asyncio
async def test_admin_fix_by_tutor_is_unauthorized(client, harness) -> None:
    harness.caller = harness.tutor
    booking = harness.booking(paid_at=FIXED_NOW)

    response = await client.post(f"{API}/admin/bookings/fix-status", json={"booking_id": str(booking.id)})

    assert response.status_code == 401
    assert booking.status == BookingStatusEnum.PENDING


@pytest.mark.asyncio
async def test_admin_fix_with_empty_body_from_non_admin_is_unauthorized(client, harness) -> None:
    harness.caller = harness.student

    response = await client.post(f"{API}/admin/bookings/fix-status", json={})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthorized"


@pytest.mark.asyncio
async def test_status_update_by_outsider_is_unauthorized(client, harness) -> None:
    harness.caller = harness.outsider
    booking = harness.booking(status=BookingStatusEnum.CONFIRMED)

    response = await client.put(f"{API}/bookings/{booking.id}/status", json={"status": "cancelled"})

    assert response.status_code == 401
    assert booking.status == BookingStatusEnum.CONFIRMED


@pytest.mark.asyncio
async def test_tutor_cancel_twice_returns_400_the_second_time(client, harness) -> None:
    harness.caller = harness.tutor
    booking = harness.booking(status=BookingStatusEnum.CONFIRMED)

    first = await client.put(f"{API}/tutor/bookings/{booking.id}/cancel", json={"reason": "Travelling"})
    second = await client.put(f"{API}/tutor/bookings/{booking.id}/cancel")

    assert first.status_code == 200
    assert first.json()["message"] == "Session cancelled successfully"
    assert first.json()["booking"]["cancellation_reason"] == "Travelling"
    assert second.status_code == 400
    assert len(harness.notifications.for_user(harness.student.user_id)) == 1


@pytest.mark.asyncio
async def test_tutor_reschedules_unpaid_confirmed_booking_back_to_pending(client, harness) -> None:
    harness.caller = harness.tutor
    booking = harness.booking(status=BookingStatusEnum.CONFIRMED)
    new_time = (datetime.now(UTC) + timedelta(days=7)).replace(microsecond=0)

    response = await client.put(
        f"{API}/bookings/{booking.id}/reschedule",
        json={"new_scheduled_at": new_time.isoformat(), "reason": "Conference"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["message"] == "Session rescheduled successfully"
    assert payload["booking"]["status"] == "pending"
    assert booking.scheduled_at == new_time


@pytest.mark.asyncio
async def test_reschedule_by_student_is_unauthorized(client, harness) -> None:
    booking = harness.booking()
    new_time = datetime.now(UTC) + timedelta(days=7)

    response = await client.put(
        f"{API}/bookings/{booking.id}/reschedule",
        json={"new_scheduled_at": new_time.isoformat()},
    )

    assert response.status_code == 401
    assert booking.scheduled_at == FIXED_NOW + timedelta(days=1)
