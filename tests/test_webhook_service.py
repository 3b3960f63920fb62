from __future__ import annotations

import json
from uuid import uuid4

import httpx
import pytest
from prometheus_client import REGISTRY

import tutormarket.modules.payments.reconciliation as reconciliation_module
from tutormarket.core.config import Settings
from tutormarket.core.enums import BookingStatusEnum, PaymentGatewayEnum
from tutormarket.modules.audit.service import PAYMENT_WEBHOOK_UNMATCHED
from tutormarket.modules.payments.gateways import GatewayRegistry
from tutormarket.shared.exceptions import WebhookSignatureException

from conftest import FIXED_NOW, STRIPE_WEBHOOK_SECRET, stripe_signature


@pytest.fixture(autouse=True)
def _frozen_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(reconciliation_module, "utc_now", lambda: FIXED_NOW)


class PaystackApi:
    """Mock Paystack verify endpoint."""

    def __init__(self, status: str = "success", amount: int = 2500) -> None:
        self.status = status
        self.amount = amount
        self.calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        reference = request.url.path.rsplit("/", 1)[-1]
        self.calls.append(reference)
        return httpx.Response(
            200,
            json={
                "status": True,
                "data": {"status": self.status, "reference": reference, "amount": self.amount, "currency": "USD"},
            },
        )


def _registry(api) -> GatewayRegistry:
    settings = Settings(
        _env_file=None,
        paystack_secret_key="sk_test_paystack",
        flutterwave_secret_key="FLWSECK_TEST",
        flutterwave_webhook_hash="flw-hash",
        stripe_webhook_secret=STRIPE_WEBHOOK_SECRET,
    )
    return GatewayRegistry(settings, transport=httpx.MockTransport(api))


def _paystack_delivery(registry: GatewayRegistry, reference: str, booking_id=None, event="charge.success"):
    body = json.dumps(
        {
            "event": event,
            "data": {
                "reference": reference,
                "amount": 2500,
                "currency": "USD",
                "metadata": {"booking_id": str(booking_id)} if booking_id else {},
            },
        },
    ).encode()
    signature = registry.get(PaymentGatewayEnum.PAYSTACK).signature_for(body)
    return body, {"x-paystack-signature": signature}


def _webhook_count(outcome: str, gateway: str = "paystack") -> float:
    value = REGISTRY.get_sample_value(
        "tutormarket_payment_webhooks_total",
        {"gateway": gateway, "outcome": outcome},
    )
    return value or 0.0


@pytest.mark.asyncio
async def test_replayed_paystack_webhook_confirms_once(harness) -> None:
    api = PaystackApi()
    registry = _registry(api)
    booking = harness.booking(payment_reference="booking_ref_1", payment_method=PaymentGatewayEnum.PAYSTACK)
    body, headers = _paystack_delivery(registry, "booking_ref_1", booking.id)
    processed_before = _webhook_count("processed")
    duplicate_before = _webhook_count("duplicate")

    first = await harness.webhook_service(registry).handle(PaymentGatewayEnum.PAYSTACK, body, headers)
    second = await harness.webhook_service(registry).handle(PaymentGatewayEnum.PAYSTACK, body, headers)

    assert first.model_dump(exclude_none=True) == {"received": True, "duplicate": False}
    assert second.model_dump(exclude_none=True) == {"received": True, "duplicate": True}
    assert booking.status == BookingStatusEnum.CONFIRMED
    assert len(harness.payments.paid_for(booking.id)) == 1
    assert api.calls == ["booking_ref_1", "booking_ref_1"]
    assert _webhook_count("processed") == processed_before + 1
    assert _webhook_count("duplicate") == duplicate_before + 1


@pytest.mark.asyncio
async def test_unmatched_paid_webhook_is_acknowledged_and_audited(harness) -> None:
    registry = _registry(PaystackApi())
    body, headers = _paystack_delivery(registry, "orphan_ref", uuid4())
    unmatched_before = REGISTRY.get_sample_value(
        "tutormarket_payment_webhook_unmatched_total",
        {"gateway": "paystack"},
    ) or 0.0

    ack = await harness.webhook_service(registry).handle(PaymentGatewayEnum.PAYSTACK, body, headers)

    assert ack.model_dump(exclude_none=True) == {"received": True, "matched": False}
    assert harness.payments.payments == []
    [entry] = harness.audit.logs
    assert entry["action"] == PAYMENT_WEBHOOK_UNMATCHED
    assert entry["actor_id"] is None
    assert entry["entity_id"] == "orphan_ref"
    assert entry["payload"]["gateway"] == "paystack"
    assert REGISTRY.get_sample_value(
        "tutormarket_payment_webhook_unmatched_total",
        {"gateway": "paystack"},
    ) == unmatched_before + 1


@pytest.mark.asyncio
async def test_invalid_signature_changes_nothing(harness) -> None:
    registry = _registry(PaystackApi())
    booking = harness.booking(payment_reference="booking_ref_1")
    body, _ = _paystack_delivery(registry, "booking_ref_1", booking.id)
    rejected_before = _webhook_count("invalid_signature")

    with pytest.raises(WebhookSignatureException):
        await harness.webhook_service(registry).handle(
            PaymentGatewayEnum.PAYSTACK,
            body,
            {"x-paystack-signature": "0" * 128},
        )

    assert booking.status == BookingStatusEnum.PENDING
    assert harness.payments.payments == []
    assert _webhook_count("invalid_signature") == rejected_before + 1


@pytest.mark.asyncio
async def test_non_charge_event_is_ignored_without_gateway_call(harness) -> None:
    api = PaystackApi()
    registry = _registry(api)
    booking = harness.booking(payment_reference="booking_ref_1")
    body, headers = _paystack_delivery(registry, "booking_ref_1", booking.id, event="refund.processed")

    ack = await harness.webhook_service(registry).handle(PaymentGatewayEnum.PAYSTACK, body, headers)

    assert ack.model_dump(exclude_none=True) == {"received": True}
    assert api.calls == []
    assert booking.status == BookingStatusEnum.PENDING


@pytest.mark.asyncio
async def test_charge_not_confirmed_by_gateway_api_is_ignored(harness) -> None:
    registry = _registry(PaystackApi(status="abandoned"))
    booking = harness.booking(payment_reference="booking_ref_1")
    body, headers = _paystack_delivery(registry, "booking_ref_1", booking.id)

    ack = await harness.webhook_service(registry).handle(PaymentGatewayEnum.PAYSTACK, body, headers)

    assert ack.model_dump(exclude_none=True) == {"received": True}
    assert booking.status == BookingStatusEnum.PENDING
    assert harness.payments.payments == []


@pytest.mark.asyncio
async def test_flutterwave_webhook_uses_verified_amount(harness) -> None:
    def flutterwave_api(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/transactions/verify_by_reference")
        return httpx.Response(
            200,
            json={
                "status": "success",
                "data": {
                    "status": "successful",
                    "tx_ref": request.url.params["tx_ref"],
                    "amount": 30,
                    "currency": "USD",
                },
            },
        )

    registry = _registry(flutterwave_api)
    booking = harness.booking(payment_reference="booking_flw_1")
    body = json.dumps(
        {
            "event": "charge.completed",
            "data": {"tx_ref": "booking_flw_1", "status": "successful", "amount": 1, "currency": "USD"},
        },
    ).encode()

    await harness.webhook_service(registry).handle(
        PaymentGatewayEnum.FLUTTERWAVE,
        body,
        {"verif-hash": "flw-hash"},
    )

    [payment] = harness.payments.paid_for(booking.id)
    assert str(payment.amount) == "30.00"
    assert booking.status == BookingStatusEnum.CONFIRMED


def _stripe_checkout_completed(session_id: str, booking_id) -> bytes:
    return json.dumps(
        {
            "id": f"evt_{session_id}",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "payment_status": "paid",
                    "amount_total": 2500,
                    "currency": "usd",
                    "metadata": {"booking_id": str(booking_id)},
                },
            },
        },
    ).encode()


@pytest.mark.asyncio
async def test_stripe_checkout_completed_confirms_booking_from_metadata_once(harness) -> None:
    def no_gateway_calls(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected gateway call to {request.url}")

    registry = _registry(no_gateway_calls)
    booking = harness.booking()
    body = _stripe_checkout_completed("cs_test_paid", booking.id)
    processed_before = _webhook_count("processed", gateway="stripe")

    first = await harness.webhook_service(registry).handle(
        PaymentGatewayEnum.STRIPE,
        body,
        {"stripe-signature": stripe_signature(body)},
    )
    replay = await harness.webhook_service(registry).handle(
        PaymentGatewayEnum.STRIPE,
        body,
        {"stripe-signature": stripe_signature(body)},
    )

    assert first.model_dump(exclude_none=True) == {"received": True, "duplicate": False}
    assert replay.model_dump(exclude_none=True) == {"received": True, "duplicate": True}
    assert booking.status == BookingStatusEnum.CONFIRMED
    assert booking.payment_method == PaymentGatewayEnum.STRIPE
    assert booking.payment_reference == "cs_test_paid"
    [payment] = harness.payments.paid_for(booking.id)
    assert payment.transaction_reference == "cs_test_paid"
    assert str(payment.amount) == "25.00"
    assert _webhook_count("processed", gateway="stripe") == processed_before + 1


@pytest.mark.asyncio
async def test_stripe_delivery_signed_with_another_secret_is_rejected(harness) -> None:
    registry = _registry(PaystackApi())
    booking = harness.booking()
    body = _stripe_checkout_completed("cs_test_forged", booking.id)

    with pytest.raises(WebhookSignatureException):
        await harness.webhook_service(registry).handle(
            PaymentGatewayEnum.STRIPE,
            body,
            {"stripe-signature": stripe_signature(body, "whsec_attacker")},
        )

    assert booking.status == BookingStatusEnum.PENDING
    assert harness.payments.payments == []


@pytest.mark.asyncio
@pytest.mark.parametrize("data", ["oops", ["reference"], 42])
async def test_paystack_delivery_with_non_object_data_is_ignored(harness, data) -> None:
    api = PaystackApi()
    registry = _registry(api)
    body = json.dumps({"event": "charge.success", "data": data}).encode()
    headers = {"x-paystack-signature": registry.get(PaymentGatewayEnum.PAYSTACK).signature_for(body)}

    ack = await harness.webhook_service(registry).handle(PaymentGatewayEnum.PAYSTACK, body, headers)

    assert ack.model_dump(exclude_none=True) == {"received": True}
    assert api.calls == []
    assert harness.payments.payments == []
