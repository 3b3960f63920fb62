"""Payments schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from tutormarket.core.enums import PaymentGatewayEnum, PaymentStatusEnum
from tutormarket.modules.booking.schemas import BookingRead


class PaymentInitiateRequest(BaseModel):
    """Start a gateway checkout for a pending booking."""

    booking_id: UUID
    method: PaymentGatewayEnum


class PaymentInitiateRead(BaseModel):
    payment_url: str
    reference: str
    method: PaymentGatewayEnum


class PaymentVerifyRequest(BaseModel):
    reference: str = Field(min_length=1, max_length=128)


class PaymentVerifyRead(BaseModel):
    """Result of a client-triggered verification."""

    verified: bool
    duplicate: bool = False
    booking: BookingRead


class WalletPayRequest(BaseModel):
    booking_id: UUID


class WalletFundRequest(BaseModel):
    """Admin top-up of a user's wallet."""

    user_id: UUID
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class WalletRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    balance: Decimal
    currency: str
    updated_at: datetime


class WalletPayRead(BaseModel):
    booking: BookingRead
    wallet: WalletRead


class PaymentRead(BaseModel):
    """Payment response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    booking_id: UUID
    amount: Decimal
    currency: str
    status: PaymentStatusEnum
    gateway: PaymentGatewayEnum
    transaction_reference: str
    paid_at: datetime | None
    created_at: datetime


class WebhookAck(BaseModel):
    """Minimal acknowledgement returned to gateways."""

    received: bool = True
    duplicate: bool | None = None
    matched: bool | None = None
