"""Seed idempotent demo data for local/non-production environments."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.config import get_settings
from tutormarket.core.database import SessionLocal, close_engine
from tutormarket.core.enums import BookingStatusEnum, PaymentGatewayEnum, RoleEnum
from tutormarket.core.security import hash_password, verify_password
from tutormarket.modules.booking.models import Booking
from tutormarket.modules.booking.repository import BookingRepository
from tutormarket.modules.identity.models import User
from tutormarket.modules.payments.repository import PaymentsRepository

DEMO_PASSWORD = "DemoPass123!"

DEMO_USERS = (
    ("demo-superadmin@tutormarket.dev", "Demo Super Admin", RoleEnum.SUPER_ADMIN),
    ("demo-admin@tutormarket.dev", "Demo Admin", RoleEnum.ADMIN),
    ("demo-tutor@tutormarket.dev", "Demo Tutor", RoleEnum.TUTOR),
    ("demo-student@tutormarket.dev", "Demo Student", RoleEnum.STUDENT),
)

DEMO_WALLET_BALANCE = Decimal("100.00")
DEMO_BOOKING_DAY_OFFSETS = (1, 3)
DEMO_STUCK_REFERENCE = "demo_stuck_payment"


@dataclass(slots=True)
class SeedStats:
    users_created: int = 0
    users_updated: int = 0
    wallet_funded: bool = False
    bookings_created: int = 0
    stuck_booking_id: str | None = None


async def _ensure_user(session: AsyncSession, *, email: str, name: str, role: RoleEnum) -> tuple[User, bool]:
    user = await session.scalar(select(User).where(User.email == email))
    created = False
    if user is None:
        user = User(
            email=email,
            name=name,
            password_hash=hash_password(DEMO_PASSWORD),
            role=role,
            is_active=True,
        )
        session.add(user)
        created = True
    else:
        if not verify_password(DEMO_PASSWORD, user.password_hash):
            user.password_hash = hash_password(DEMO_PASSWORD)
        user.name = name
        user.role = role
        user.is_active = True

    await session.flush()
    return user, created


async def _ensure_student_wallet(session: AsyncSession, student: User, currency: str) -> bool:
    repository = PaymentsRepository(session)
    wallet = await repository.get_or_create_wallet(student.id, currency)
    if wallet.balance >= DEMO_WALLET_BALANCE:
        return False
    await repository.credit_wallet(wallet, DEMO_WALLET_BALANCE - wallet.balance)
    return True


async def _ensure_pending_bookings(session: AsyncSession, *, student: User, tutor: User) -> int:
    settings = get_settings()
    repository = BookingRepository(session)
    existing = await session.scalar(
        select(Booking).where(
            Booking.student_id == student.id,
            Booking.tutor_id == tutor.id,
            Booking.status == BookingStatusEnum.PENDING,
            Booking.paid_at.is_(None),
        ),
    )
    if existing is not None:
        return 0

    now = datetime.now(UTC).replace(minute=0, second=0, microsecond=0)
    for day_offset in DEMO_BOOKING_DAY_OFFSETS:
        await repository.create_booking(
            student_id=student.id,
            tutor_id=tutor.id,
            scheduled_at=now + timedelta(days=day_offset),
            duration_minutes=settings.session_duration_minutes,
            price=settings.session_price,
            currency=settings.default_currency,
            is_instant=False,
            notes="Demo session",
        )
    return len(DEMO_BOOKING_DAY_OFFSETS)


async def _ensure_stuck_booking(session: AsyncSession, *, student: User, tutor: User) -> Booking:
    """A paid booking left in PENDING, for trying the admin fix endpoint."""
    settings = get_settings()
    repository = BookingRepository(session)
    booking = await repository.get_booking_by_payment_reference(DEMO_STUCK_REFERENCE)
    if booking is not None:
        return booking

    booking = await repository.create_booking(
        student_id=student.id,
        tutor_id=tutor.id,
        scheduled_at=datetime.now(UTC) + timedelta(days=2),
        duration_minutes=settings.session_duration_minutes,
        price=settings.session_price,
        currency=settings.default_currency,
        is_instant=False,
        notes="Paid but never confirmed",
    )
    return await repository.set_payment_details(
        booking,
        payment_method=PaymentGatewayEnum.MANUAL,
        payment_reference=DEMO_STUCK_REFERENCE,
        paid_at=datetime.now(UTC),
    )


async def _run_seed(*, allow_production: bool) -> SeedStats:
    settings = get_settings()
    app_env = settings.app_env.strip().lower()
    if app_env in {"production", "prod"} and not allow_production:
        raise RuntimeError(
            "Refusing to seed demo data in production. "
            "Re-run with --allow-production only if you are absolutely sure.",
        )

    stats = SeedStats()

    async with SessionLocal() as session:
        try:
            users: dict[RoleEnum, User] = {}
            for email, name, role in DEMO_USERS:
                user, created = await _ensure_user(session, email=email, name=name, role=role)
                users[role] = user
                if created:
                    stats.users_created += 1
                else:
                    stats.users_updated += 1

            student, tutor = users[RoleEnum.STUDENT], users[RoleEnum.TUTOR]
            stats.wallet_funded = await _ensure_student_wallet(session, student, settings.default_currency)
            stats.bookings_created = await _ensure_pending_bookings(session, student=student, tutor=tutor)
            stuck = await _ensure_stuck_booking(session, student=student, tutor=tutor)
            stats.stuck_booking_id = str(stuck.id)

            await session.commit()
        except Exception:
            await session.rollback()
            raise

    return stats


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Seed idempotent demo data for TutorMarket (staff, tutor and student accounts, "
            "a funded wallet, pending bookings and one paid-but-pending booking)."
        ),
    )
    parser.add_argument(
        "--allow-production",
        action="store_true",
        help="Allow seeding even when APP_ENV is production/prod.",
    )
    return parser


def _print_summary(stats: SeedStats) -> None:
    print("Demo seed completed.")
    print(f"- Users created: {stats.users_created}")
    print(f"- Users updated: {stats.users_updated}")
    print(f"- Student wallet topped up: {stats.wallet_funded}")
    print(f"- Pending bookings created: {stats.bookings_created}")
    print(f"- Paid-but-pending booking id: {stats.stuck_booking_id}")
    print("")
    print("Demo credentials (non-production only):")
    for email, _, role in DEMO_USERS:
        print(f"- {role}: {email} / {DEMO_PASSWORD}")


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    try:
        stats = asyncio.run(_run_seed(allow_production=args.allow_production))
    except Exception as exc:
        print(f"Demo seed failed: {exc}")
        return 1
    finally:
        asyncio.run(close_engine())

    _print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
