"""Payments business logic layer."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.config import get_settings
from tutormarket.core.database import get_db_session
from tutormarket.core.enums import BookingStatusEnum, PaymentGatewayEnum
from tutormarket.modules.audit.repository import AuditRepository
from tutormarket.modules.audit.service import WALLET_FUNDED, AuditService
from tutormarket.modules.booking.models import Booking
from tutormarket.modules.booking.policies import ensure_participant
from tutormarket.modules.booking.repository import BookingRepository
from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.identity.repository import IdentityRepository
from tutormarket.modules.notifications.repository import NotificationsRepository
from tutormarket.modules.notifications.service import NotificationEmitter
from tutormarket.modules.payments.gateways import CheckoutSession, GatewayRegistry, get_gateway_registry
from tutormarket.modules.payments.models import Payment, Wallet
from tutormarket.modules.payments.reconciliation import (
    PaymentReconciliationService,
    ReconciliationOutcome,
    ReconciliationResult,
)
from tutormarket.modules.payments.repository import PaymentsRepository
from tutormarket.shared.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
)
from tutormarket.shared.utils import to_money

logger = logging.getLogger(__name__)
settings = get_settings()

CHECKOUT_GATEWAYS = frozenset(
    {PaymentGatewayEnum.STRIPE, PaymentGatewayEnum.FLUTTERWAVE, PaymentGatewayEnum.PAYSTACK},
)


def wallet_reference(booking_id: UUID) -> str:
    return f"wallet:{booking_id}"


class PaymentsService:
    """Checkout, verification and wallet operations on behalf of users."""

    def __init__(
        self,
        repository: PaymentsRepository,
        booking_repository: BookingRepository,
        identity_repository: IdentityRepository,
        reconciliation: PaymentReconciliationService,
        gateways: GatewayRegistry,
        audit_service: AuditService,
    ) -> None:
        self.repository = repository
        self.booking_repository = booking_repository
        self.identity_repository = identity_repository
        self.reconciliation = reconciliation
        self.gateways = gateways
        self.audit_service = audit_service

    async def _get_payable_booking(
        self,
        booking_id: UUID,
        actor: AuthContext,
        for_update: bool = False,
    ) -> Booking:
        if for_update:
            booking = await self.booking_repository.get_booking_for_update(booking_id)
        else:
            booking = await self.booking_repository.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        if booking.student_id != actor.user_id:
            raise UnauthorizedException("Only the booking's student can pay for it")
        if booking.status != BookingStatusEnum.PENDING:
            raise BusinessRuleException(f"Booking is {booking.status} and cannot be paid")
        if booking.paid_at is not None:
            raise BusinessRuleException("Booking is already paid")
        return booking

    async def initiate_payment(
        self,
        booking_id: UUID,
        method: PaymentGatewayEnum,
        actor: AuthContext,
    ) -> CheckoutSession:
        """Open a gateway checkout and remember its reference on the booking."""
        if method not in CHECKOUT_GATEWAYS:
            raise BusinessRuleException(f"Unsupported payment method: {method}")
        booking = await self._get_payable_booking(booking_id, actor)

        gateway = self.gateways.get(method)
        checkout = await gateway.create_checkout(
            booking,
            amount=booking.price,
            currency=booking.currency,
            customer_email=actor.email,
        )
        await self.booking_repository.set_payment_details(
            booking,
            payment_method=method,
            payment_reference=checkout.reference,
        )
        await self.repository.create_payment(
            user_id=booking.student_id,
            booking_id=booking.id,
            amount=booking.price,
            currency=booking.currency,
            gateway=method,
            transaction_reference=checkout.reference,
        )
        logger.info("Started %s checkout %s for booking %s", method, checkout.reference, booking.id)
        return checkout

    async def verify_payment(self, reference: str, actor: AuthContext) -> ReconciliationResult:
        """Ask the booking's gateway about ``reference`` and reconcile a success."""
        booking = await self.booking_repository.get_booking_by_payment_reference(reference)
        if booking is None:
            raise NotFoundException("No booking found for this payment reference")
        ensure_participant(booking, actor)
        if booking.payment_method not in CHECKOUT_GATEWAYS:
            raise BusinessRuleException("Booking has no gateway payment to verify")

        verification = await self.gateways.get(booking.payment_method).verify_transaction(reference)
        if not verification.success:
            logger.info("Gateway %s reports reference %s as not paid", booking.payment_method, reference)
            return ReconciliationResult(ReconciliationOutcome.NOT_PAID, booking=booking)

        return await self.reconciliation.record_successful_charge(
            gateway=booking.payment_method,
            transaction_reference=reference,
            amount=verification.amount,
            currency=verification.currency,
            booking_id=booking.id,
            trigger="client_verification",
        )

    async def pay_with_wallet(self, booking_id: UUID, actor: AuthContext) -> tuple[Booking, Wallet]:
        """Debit the student's wallet by the booking price and confirm it."""
        booking = await self._get_payable_booking(booking_id, actor, for_update=True)

        wallet = await self.repository.debit_wallet(actor.user_id, booking.price)
        if wallet is None:
            raise BusinessRuleException("Insufficient wallet balance")

        result = await self.reconciliation.record_successful_charge(
            gateway=PaymentGatewayEnum.WALLET,
            transaction_reference=wallet_reference(booking.id),
            amount=booking.price,
            currency=booking.currency,
            booking_id=booking.id,
            trigger="wallet",
        )
        if result.duplicate:
            raise BusinessRuleException("Booking is already paid")
        logger.info("Booking %s paid from wallet of user %s", booking.id, actor.user_id)
        return result.booking, wallet

    async def get_wallet(self, actor: AuthContext) -> Wallet:
        return await self.repository.get_or_create_wallet(actor.user_id, settings.default_currency)

    async def fund_wallet(self, user_id: UUID, amount: Decimal, actor: AuthContext) -> Wallet:
        """Credit a user's wallet (admin only)."""
        if not actor.is_admin:
            raise ForbiddenException("Only admin can fund wallets")
        user = await self.identity_repository.get_user_by_id(user_id)
        if user is None:
            raise NotFoundException("User not found")

        wallet = await self.repository.get_or_create_wallet(user_id, settings.default_currency)
        wallet = await self.repository.credit_wallet(wallet, to_money(amount))
        await self.audit_service.record(
            WALLET_FUNDED,
            entity_type="wallet",
            entity_id=wallet.id,
            payload={"user_id": str(user_id), "amount": str(to_money(amount))},
            actor=actor,
        )
        return wallet

    async def list_my_payments(self, actor: AuthContext, limit: int, offset: int) -> tuple[list[Payment], int]:
        return await self.repository.list_payments_for_user(actor.user_id, limit, offset)


def build_reconciliation_service(session: AsyncSession) -> PaymentReconciliationService:
    return PaymentReconciliationService(
        booking_repository=BookingRepository(session),
        payments_repository=PaymentsRepository(session),
        notifier=NotificationEmitter(NotificationsRepository(session)),
    )


async def get_payments_service(
    session: AsyncSession = Depends(get_db_session),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
) -> PaymentsService:
    """Dependency provider for payments service."""
    return PaymentsService(
        repository=PaymentsRepository(session),
        booking_repository=BookingRepository(session),
        identity_repository=IdentityRepository(session),
        reconciliation=build_reconciliation_service(session),
        gateways=gateways,
        audit_service=AuditService(AuditRepository(session)),
    )
