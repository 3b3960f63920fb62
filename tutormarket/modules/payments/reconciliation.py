"""Idempotent recording of confirmed charges against bookings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from uuid import UUID

from tutormarket.core.enums import BookingStatusEnum, NotificationTypeEnum, PaymentGatewayEnum, PaymentStatusEnum
from tutormarket.modules.booking.models import Booking
from tutormarket.modules.booking.repository import BookingRepository
from tutormarket.modules.booking.state_machine import is_terminal
from tutormarket.modules.booking.transitions import apply_transition
from tutormarket.modules.notifications.service import NotificationEmitter
from tutormarket.modules.payments.models import Payment
from tutormarket.modules.payments.repository import PaymentsRepository
from tutormarket.shared.utils import to_money, utc_now

logger = logging.getLogger(__name__)


class ReconciliationOutcome(StrEnum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    UNMATCHED = "unmatched"
    NOT_PAID = "not_paid"


@dataclass(slots=True)
class ReconciliationResult:
    outcome: ReconciliationOutcome
    booking: Booking | None = None
    payment: Payment | None = None

    @property
    def duplicate(self) -> bool:
        return self.outcome == ReconciliationOutcome.DUPLICATE


class PaymentReconciliationService:
    """Single write path for "the gateway says this charge succeeded".

    Webhooks, client-side verification, wallet payments and instant
    acceptance all end up here. Callers share the request transaction, so
    the payment row and the booking update commit or roll back together.
    """

    def __init__(
        self,
        booking_repository: BookingRepository,
        payments_repository: PaymentsRepository,
        notifier: NotificationEmitter,
    ) -> None:
        self.booking_repository = booking_repository
        self.payments_repository = payments_repository
        self.notifier = notifier

    async def _lock_booking(
        self,
        booking_id: UUID | None,
        gateway: PaymentGatewayEnum,
        reference: str,
    ) -> Booking | None:
        if booking_id is not None:
            booking = await self.booking_repository.get_booking_for_update(booking_id)
            if booking is not None:
                return booking
        booking = await self.booking_repository.get_booking_by_payment_reference(reference, for_update=True)
        if booking is not None:
            return booking

        # A later checkout replaces the booking's reference, but every checkout leaves its own payment row.
        checkout = await self.payments_repository.get_payment_by_reference(gateway, reference)
        if checkout is None:
            return None
        return await self.booking_repository.get_booking_for_update(checkout.booking_id)

    async def record_successful_charge(
        self,
        *,
        gateway: PaymentGatewayEnum,
        transaction_reference: str,
        amount: Decimal | None,
        currency: str | None,
        booking_id: UUID | None = None,
        trigger: str = "payment",
        notify: bool = True,
    ) -> ReconciliationResult:
        """Record a PAID payment once and confirm the booking if still pending."""
        booking = await self._lock_booking(booking_id, gateway, transaction_reference)
        if booking is None:
            return ReconciliationResult(ReconciliationOutcome.UNMATCHED)

        existing = await self.payments_repository.get_payment_by_reference(gateway, transaction_reference)
        if existing is not None and existing.status == PaymentStatusEnum.PAID:
            logger.info(
                "Duplicate %s charge %s for booking %s ignored",
                gateway,
                transaction_reference,
                booking.id,
            )
            return ReconciliationResult(ReconciliationOutcome.DUPLICATE, booking=booking, payment=existing)

        now = utc_now()
        charged_amount = to_money(amount) if amount is not None else booking.price
        charged_currency = (currency or booking.currency).upper()
        if charged_amount != booking.price:
            logger.warning(
                "Charge %s amount %s %s differs from booking %s price %s %s",
                transaction_reference,
                charged_amount,
                charged_currency,
                booking.id,
                booking.price,
                booking.currency,
            )

        if existing is not None:
            payment = await self.payments_repository.mark_payment_paid(
                existing,
                amount=charged_amount,
                currency=charged_currency,
                paid_at=now,
            )
        else:
            payment = await self.payments_repository.create_payment(
                user_id=booking.student_id,
                booking_id=booking.id,
                amount=charged_amount,
                currency=charged_currency,
                gateway=gateway,
                transaction_reference=transaction_reference,
                status=PaymentStatusEnum.PAID,
                paid_at=now,
            )

        confirmed_now = False
        if is_terminal(booking.status):
            logger.warning(
                "Payment %s received for %s booking %s; status left unchanged",
                transaction_reference,
                booking.status,
                booking.id,
            )
        else:
            if booking.status == BookingStatusEnum.PENDING:
                booking = await apply_transition(
                    self.booking_repository,
                    booking,
                    BookingStatusEnum.CONFIRMED,
                    trigger=trigger,
                    now=now,
                )
                confirmed_now = True
            booking = await self.booking_repository.set_payment_details(
                booking,
                payment_method=gateway,
                payment_reference=None if booking.payment_reference else transaction_reference,
                paid_at=None if booking.paid_at else now,
            )

        if notify and not is_terminal(booking.status):
            await self._notify_participants(booking, payment, confirmed_now)
        return ReconciliationResult(ReconciliationOutcome.PROCESSED, booking=booking, payment=payment)

    async def _notify_participants(self, booking: Booking, payment: Payment, confirmed_now: bool) -> None:
        data = {
            "booking_id": str(booking.id),
            "payment_id": str(payment.id),
            "amount": str(payment.amount),
            "currency": payment.currency,
        }
        await self.notifier.notify(
            booking.student_id,
            NotificationTypeEnum.PAYMENT_CONFIRMED,
            "Payment received",
            f"Your payment of {payment.amount} {payment.currency} was received.",
            data,
        )
        if confirmed_now:
            await self.notifier.notify(
                booking.tutor_id,
                NotificationTypeEnum.BOOKING_CONFIRMED,
                "Booking confirmed",
                "A student has paid for a session with you.",
                data,
            )
