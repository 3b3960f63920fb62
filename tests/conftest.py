from __future__ import annotations

import hashlib
import hmac
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

from tutormarket.core.enums import BookingStatusEnum, PaymentGatewayEnum, PaymentStatusEnum, RoleEnum
from tutormarket.modules.admin.service import AdminService
from tutormarket.modules.audit.service import AuditService
from tutormarket.modules.booking.service import BookingService
from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.notifications.service import NotificationEmitter
from tutormarket.modules.payments.reconciliation import PaymentReconciliationService
from tutormarket.modules.payments.service import PaymentsService
from tutormarket.modules.payments.webhooks import WebhookService

FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
STRIPE_WEBHOOK_SECRET = "whsec_unit_test"


def stripe_signature(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET) -> str:
    """Stripe-Signature header value as Stripe computes it."""
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@dataclass
class FakeBooking:
    id: UUID
    student_id: UUID
    tutor_id: UUID
    status: BookingStatusEnum = BookingStatusEnum.PENDING
    scheduled_at: datetime = FIXED_NOW + timedelta(days=1)
    duration_minutes: int = 60
    is_instant: bool = False
    notes: str | None = None
    price: Decimal = Decimal("25.00")
    currency: str = "USD"
    paid_at: datetime | None = None
    payment_method: PaymentGatewayEnum | None = None
    payment_reference: str | None = None
    confirmed_at: datetime | None = None
    canceled_at: datetime | None = None
    completed_at: datetime | None = None
    cancellation_reason: str | None = None
    created_at: datetime = FIXED_NOW
    updated_at: datetime = FIXED_NOW


@dataclass
class FakePayment:
    id: UUID
    user_id: UUID
    booking_id: UUID
    amount: Decimal
    currency: str
    gateway: PaymentGatewayEnum
    transaction_reference: str
    status: PaymentStatusEnum
    paid_at: datetime | None = None
    created_at: datetime = FIXED_NOW


@dataclass
class FakeWallet:
    user_id: UUID
    balance: Decimal
    currency: str = "USD"
    id: UUID = field(default_factory=uuid4)
    updated_at: datetime = FIXED_NOW


class FakeBookingRepository:
    def __init__(self) -> None:
        self.bookings: dict[UUID, FakeBooking] = {}
        self.locked: list[UUID] = []
        self.stale_transitions = False

    def add(self, booking: FakeBooking) -> FakeBooking:
        self.bookings[booking.id] = booking
        return booking

    async def create_booking(self, **values) -> FakeBooking:
        booking = FakeBooking(id=uuid4(), **values)
        return self.add(booking)

    async def get_booking_by_id(self, booking_id: UUID) -> FakeBooking | None:
        return self.bookings.get(booking_id)

    async def get_booking_for_update(self, booking_id: UUID) -> FakeBooking | None:
        self.locked.append(booking_id)
        return self.bookings.get(booking_id)

    async def get_booking_by_payment_reference(
        self,
        reference: str,
        *,
        for_update: bool = False,
    ) -> FakeBooking | None:
        for booking in self.bookings.values():
            if booking.payment_reference == reference:
                if for_update:
                    self.locked.append(booking.id)
                return booking
        return None

    async def list_bookings(self, user_id, role, status, limit, offset):
        items = [
            booking
            for booking in self.bookings.values()
            if role not in (RoleEnum.STUDENT, RoleEnum.TUTOR) or user_id in (booking.student_id, booking.tutor_id)
        ]
        if status is not None:
            items = [booking for booking in items if booking.status == status]
        return items[offset : offset + limit], len(items)

    async def list_pending_paid(self, limit: int, offset: int):
        items = [
            booking
            for booking in self.bookings.values()
            if booking.status == BookingStatusEnum.PENDING and booking.paid_at is not None
        ]
        return items[offset : offset + limit], len(items)

    async def transition_status(self, booking_id, expected_status, target_status, **values):
        booking = self.bookings.get(booking_id)
        if booking is None or booking.status != expected_status or self.stale_transitions:
            return None
        booking.status = target_status
        for key, value in values.items():
            setattr(booking, key, value)
        return booking

    async def find_conflicting_booking(self, tutor_id, window_start, window_end, statuses, exclude_booking_id=None):
        for booking in self.bookings.values():
            if (
                booking.tutor_id == tutor_id
                and booking.id != exclude_booking_id
                and booking.status in statuses
                and window_start <= booking.scheduled_at <= window_end
            ):
                return booking
        return None

    async def reschedule_booking(self, booking_id, expected_status, scheduled_at, status, **values):
        booking = self.bookings.get(booking_id)
        if booking is None or booking.status != expected_status or self.stale_transitions:
            return None
        booking.scheduled_at = scheduled_at
        booking.status = status
        for key, value in values.items():
            setattr(booking, key, value)
        return booking

    async def set_payment_details(self, booking, *, payment_method, payment_reference, paid_at=None):
        booking.payment_method = payment_method
        if payment_reference is not None:
            booking.payment_reference = payment_reference
        if paid_at is not None:
            booking.paid_at = paid_at
        return booking


class FakePaymentsRepository:
    def __init__(self) -> None:
        self.payments: list[FakePayment] = []
        self.wallets: dict[UUID, FakeWallet] = {}

    async def create_payment(
        self,
        user_id,
        booking_id,
        amount,
        currency,
        gateway,
        transaction_reference,
        status=PaymentStatusEnum.PENDING,
        paid_at=None,
    ) -> FakePayment:
        payment = FakePayment(
            id=uuid4(),
            user_id=user_id,
            booking_id=booking_id,
            amount=amount,
            currency=currency.upper(),
            gateway=gateway,
            transaction_reference=transaction_reference,
            status=status,
            paid_at=paid_at,
        )
        self.payments.append(payment)
        return payment

    async def get_payment_by_reference(self, gateway, transaction_reference) -> FakePayment | None:
        for payment in self.payments:
            if payment.gateway == gateway and payment.transaction_reference == transaction_reference:
                return payment
        return None

    async def mark_payment_paid(self, payment, amount, currency, paid_at) -> FakePayment:
        payment.status = PaymentStatusEnum.PAID
        payment.amount = amount
        payment.currency = currency
        payment.paid_at = paid_at
        return payment

    async def get_latest_paid_payment(self, booking_id: UUID) -> FakePayment | None:
        paid = [p for p in self.payments if p.booking_id == booking_id and p.status == PaymentStatusEnum.PAID]
        return paid[-1] if paid else None

    async def list_payments_for_user(self, user_id, limit, offset):
        items = [payment for payment in self.payments if payment.user_id == user_id]
        return items[offset : offset + limit], len(items)

    def paid_for(self, booking_id: UUID) -> list[FakePayment]:
        return [p for p in self.payments if p.booking_id == booking_id and p.status == PaymentStatusEnum.PAID]

    async def get_wallet(self, user_id: UUID) -> FakeWallet | None:
        return self.wallets.get(user_id)

    async def get_or_create_wallet(self, user_id: UUID, currency: str) -> FakeWallet:
        return self.wallets.setdefault(user_id, FakeWallet(user_id=user_id, balance=Decimal("0.00"), currency=currency))

    async def debit_wallet(self, user_id: UUID, amount: Decimal) -> FakeWallet | None:
        wallet = self.wallets.get(user_id)
        if wallet is None or wallet.balance < amount:
            return None
        wallet.balance -= amount
        return wallet

    async def credit_wallet(self, wallet: FakeWallet, amount: Decimal) -> FakeWallet:
        wallet.balance += amount
        return wallet


class FakeNotificationsRepository:
    def __init__(self) -> None:
        self.created: list[dict] = []
        self.fail = False

    def savepoint(self):
        return nullcontext()

    async def create_notification(self, user_id, type, title, message, data):
        if self.fail:
            raise RuntimeError("notifications table is unavailable")
        record = {"user_id": user_id, "type": type, "title": title, "message": message, "data": data}
        self.created.append(record)
        return SimpleNamespace(id=uuid4(), **record)

    def for_user(self, user_id: UUID) -> list[dict]:
        return [item for item in self.created if item["user_id"] == user_id]


class FakeAuditRepository:
    def __init__(self) -> None:
        self.logs: list[dict] = []

    async def create_audit_log(self, actor_id, action, entity_type, entity_id, payload):
        record = {
            "actor_id": actor_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "payload": payload,
        }
        self.logs.append(record)
        return SimpleNamespace(id=uuid4(), **record)

    async def list_audit_logs(self, action, entity_id, limit, offset):
        return self.logs[offset : offset + limit], len(self.logs)


class FakeIdentityRepository:
    def __init__(self) -> None:
        self.users: dict[UUID, SimpleNamespace] = {}

    def add(self, actor: AuthContext) -> None:
        self.users[actor.user_id] = SimpleNamespace(
            id=actor.user_id,
            role=actor.role,
            name=actor.name,
            email=actor.email,
            is_active=True,
        )

    async def get_user_by_id(self, user_id: UUID):
        return self.users.get(user_id)


def make_actor(role: RoleEnum, name: str) -> AuthContext:
    return AuthContext(user_id=uuid4(), role=role, name=name, email=f"{name.lower()}@tutormarket.dev")


@dataclass
class Harness:
    """Services wired to in-memory fakes sharing one set of repositories."""

    student: AuthContext
    tutor: AuthContext
    outsider: AuthContext
    admin: AuthContext
    bookings: FakeBookingRepository = field(default_factory=FakeBookingRepository)
    payments: FakePaymentsRepository = field(default_factory=FakePaymentsRepository)
    notifications: FakeNotificationsRepository = field(default_factory=FakeNotificationsRepository)
    audit: FakeAuditRepository = field(default_factory=FakeAuditRepository)
    identity: FakeIdentityRepository = field(default_factory=FakeIdentityRepository)

    def booking(self, **overrides) -> FakeBooking:
        values = {"id": uuid4(), "student_id": self.student.user_id, "tutor_id": self.tutor.user_id}
        values.update(overrides)
        return self.bookings.add(FakeBooking(**values))

    def notifier(self) -> NotificationEmitter:
        return NotificationEmitter(self.notifications)

    def reconciliation(self) -> PaymentReconciliationService:
        return PaymentReconciliationService(self.bookings, self.payments, self.notifier())

    def booking_service(self) -> BookingService:
        return BookingService(
            repository=self.bookings,
            identity_repository=self.identity,
            payments_repository=self.payments,
            reconciliation=self.reconciliation(),
            notifier=self.notifier(),
        )

    def admin_service(self) -> AdminService:
        return AdminService(
            booking_repository=self.bookings,
            audit_service=AuditService(self.audit),
            notifier=self.notifier(),
        )

    def payments_service(self, gateways=None) -> PaymentsService:
        return PaymentsService(
            repository=self.payments,
            booking_repository=self.bookings,
            identity_repository=self.identity,
            reconciliation=self.reconciliation(),
            gateways=gateways,
            audit_service=AuditService(self.audit),
        )

    def webhook_service(self, gateways) -> WebhookService:
        return WebhookService(
            gateways=gateways,
            reconciliation=self.reconciliation(),
            audit_service=AuditService(self.audit),
        )


@pytest.fixture
def harness() -> Harness:
    world = Harness(
        student=make_actor(RoleEnum.STUDENT, "Ada"),
        tutor=make_actor(RoleEnum.TUTOR, "Turing"),
        outsider=make_actor(RoleEnum.STUDENT, "Mallory"),
        admin=make_actor(RoleEnum.ADMIN, "Grace"),
    )
    for actor in (world.student, world.tutor, world.outsider, world.admin):
        world.identity.add(actor)
    return world
