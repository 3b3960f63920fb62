"""Core enums used across modules."""

from enum import StrEnum


class RoleEnum(StrEnum):
    """System roles."""

    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class BookingStatusEnum(StrEnum):
    """Booking lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatusEnum(StrEnum):
    """Payment processing status."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PaymentGatewayEnum(StrEnum):
    """Where the money for a payment came from."""

    STRIPE = "stripe"
    FLUTTERWAVE = "flutterwave"
    PAYSTACK = "paystack"
    WALLET = "wallet"
    MANUAL = "manual"


class NotificationTypeEnum(StrEnum):
    """User-facing notification kinds."""

    BOOKING_REQUESTED = "booking_requested"
    INSTANT_BOOKING_REQUEST = "instant_booking_request"
    INSTANT_BOOKING_ACCEPTED = "instant_booking_accepted"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_STATUS_CHANGED = "booking_status_changed"
    SESSION_CANCELLED = "session_cancelled"
    SESSION_RESCHEDULED = "session_rescheduled"
    PAYMENT_CONFIRMED = "payment_confirmed"
