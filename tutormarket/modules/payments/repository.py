"""Payments repository layer."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.enums import PaymentGatewayEnum, PaymentStatusEnum
from tutormarket.modules.payments.models import Payment, Wallet
from tutormarket.shared.utils import utc_now


class PaymentsRepository:
    """DB access methods for payments and wallets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_payment(
        self,
        user_id: UUID,
        booking_id: UUID,
        amount: Decimal,
        currency: str,
        gateway: PaymentGatewayEnum,
        transaction_reference: str,
        status: PaymentStatusEnum = PaymentStatusEnum.PENDING,
        paid_at: datetime | None = None,
    ) -> Payment:
        payment = Payment(
            user_id=user_id,
            booking_id=booking_id,
            amount=amount,
            currency=currency.upper(),
            gateway=gateway,
            transaction_reference=transaction_reference,
            status=status,
            paid_at=paid_at,
        )
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def get_payment_by_reference(
        self,
        gateway: PaymentGatewayEnum,
        transaction_reference: str,
    ) -> Payment | None:
        stmt = select(Payment).where(
            Payment.gateway == gateway,
            Payment.transaction_reference == transaction_reference,
        )
        return await self.session.scalar(stmt)

    async def mark_payment_paid(
        self,
        payment: Payment,
        amount: Decimal,
        currency: str,
        paid_at: datetime,
    ) -> Payment:
        payment.status = PaymentStatusEnum.PAID
        payment.amount = amount
        payment.currency = currency.upper()
        payment.paid_at = paid_at
        await self.session.flush()
        return payment

    async def get_latest_paid_payment(self, booking_id: UUID) -> Payment | None:
        stmt = (
            select(Payment)
            .where(Payment.booking_id == booking_id, Payment.status == PaymentStatusEnum.PAID)
            .order_by(Payment.paid_at.desc())
            .limit(1)
        )
        return await self.session.scalar(stmt)

    async def list_payments_for_user(
        self,
        user_id: UUID,
        limit: int,
        offset: int,
    ) -> tuple[list[Payment], int]:
        base_stmt: Select[tuple[Payment]] = select(Payment).where(Payment.user_id == user_id)
        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(Payment.created_at.desc()).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return items, total

    async def get_wallet(self, user_id: UUID) -> Wallet | None:
        stmt = select(Wallet).where(Wallet.user_id == user_id)
        return await self.session.scalar(stmt)

    async def get_or_create_wallet(self, user_id: UUID, currency: str) -> Wallet:
        wallet = await self.get_wallet(user_id)
        if wallet is not None:
            return wallet
        wallet = Wallet(user_id=user_id, balance=Decimal("0.00"), currency=currency)
        self.session.add(wallet)
        await self.session.flush()
        return wallet

    async def debit_wallet(self, user_id: UUID, amount: Decimal) -> Wallet | None:
        """Subtract ``amount`` only when the balance covers it; None otherwise."""
        stmt = (
            update(Wallet)
            .where(Wallet.user_id == user_id, Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount, updated_at=utc_now())
            .returning(Wallet)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def credit_wallet(self, wallet: Wallet, amount: Decimal) -> Wallet:
        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet.id)
            .values(balance=Wallet.balance + amount, updated_at=utc_now())
            .returning(Wallet)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)
