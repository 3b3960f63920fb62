from __future__ import annotations

from decimal import Decimal

import pytest

import tutormarket.modules.payments.reconciliation as reconciliation_module
from tutormarket.core.enums import BookingStatusEnum, NotificationTypeEnum, PaymentGatewayEnum
from tutormarket.modules.audit.service import WALLET_FUNDED
from tutormarket.shared.exceptions import BusinessRuleException, ForbiddenException, UnauthorizedException

from conftest import FIXED_NOW


@pytest.fixture(autouse=True)
def _frozen_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(reconciliation_module, "utc_now", lambda: FIXED_NOW)


@pytest.mark.asyncio
async def test_admin_funds_wallet_and_is_audited(harness) -> None:
    service = harness.payments_service()

    wallet = await service.fund_wallet(harness.student.user_id, Decimal("50"), harness.admin)

    assert wallet.balance == Decimal("50.00")
    [entry] = harness.audit.logs
    assert entry["action"] == WALLET_FUNDED
    assert entry["payload"]["amount"] == "50.00"

    with pytest.raises(ForbiddenException):
        await service.fund_wallet(harness.student.user_id, Decimal("50"), harness.tutor)


@pytest.mark.asyncio
async def test_wallet_payment_debits_and_confirms(harness) -> None:
    service = harness.payments_service()
    await service.fund_wallet(harness.student.user_id, Decimal("30"), harness.admin)
    booking = harness.booking(price=Decimal("25.00"))

    updated, wallet = await service.pay_with_wallet(booking.id, harness.student)

    assert wallet.balance == Decimal("5.00")
    assert updated.status == BookingStatusEnum.CONFIRMED
    assert updated.payment_method == PaymentGatewayEnum.WALLET
    assert updated.payment_reference == f"wallet:{booking.id}"
    assert updated.paid_at == FIXED_NOW
    assert harness.bookings.locked[0] == booking.id
    assert len(harness.payments.paid_for(booking.id)) == 1
    types = [n["type"] for n in harness.notifications.for_user(harness.student.user_id)]
    assert types == [NotificationTypeEnum.PAYMENT_CONFIRMED]


@pytest.mark.asyncio
async def test_insufficient_balance_leaves_everything_untouched(harness) -> None:
    service = harness.payments_service()
    await service.fund_wallet(harness.student.user_id, Decimal("10"), harness.admin)
    booking = harness.booking(price=Decimal("25.00"))

    with pytest.raises(BusinessRuleException) as exc:
        await service.pay_with_wallet(booking.id, harness.student)

    assert exc.value.message == "Insufficient wallet balance"
    assert harness.payments.wallets[harness.student.user_id].balance == Decimal("10.00")
    assert booking.status == BookingStatusEnum.PENDING
    assert harness.payments.payments == []


@pytest.mark.asyncio
async def test_second_wallet_payment_is_rejected_without_debit(harness) -> None:
    service = harness.payments_service()
    await service.fund_wallet(harness.student.user_id, Decimal("100"), harness.admin)
    booking = harness.booking(price=Decimal("25.00"))
    await service.pay_with_wallet(booking.id, harness.student)

    with pytest.raises(BusinessRuleException):
        await service.pay_with_wallet(booking.id, harness.student)

    assert harness.payments.wallets[harness.student.user_id].balance == Decimal("75.00")


@pytest.mark.asyncio
async def test_only_the_student_can_pay_from_wallet(harness) -> None:
    service = harness.payments_service()
    await service.fund_wallet(harness.tutor.user_id, Decimal("100"), harness.admin)
    booking = harness.booking()

    with pytest.raises(UnauthorizedException):
        await service.pay_with_wallet(booking.id, harness.tutor)
    assert harness.payments.wallets[harness.tutor.user_id].balance == Decimal("100.00")


@pytest.mark.asyncio
async def test_get_wallet_creates_empty_wallet(harness) -> None:
    wallet = await harness.payments_service().get_wallet(harness.outsider)

    assert wallet.balance == Decimal("0.00")
    assert wallet.currency == "USD"
