"""Payments API routers."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from tutormarket.core.enums import PaymentGatewayEnum
from tutormarket.modules.booking.schemas import BookingRead
from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.identity.service import get_current_user, require_admin
from tutormarket.modules.payments.reconciliation import ReconciliationOutcome
from tutormarket.modules.payments.schemas import (
    PaymentInitiateRead,
    PaymentInitiateRequest,
    PaymentRead,
    PaymentVerifyRead,
    PaymentVerifyRequest,
    WalletFundRequest,
    WalletPayRead,
    WalletPayRequest,
    WalletRead,
    WebhookAck,
)
from tutormarket.modules.payments.service import PaymentsService, get_payments_service
from tutormarket.modules.payments.webhooks import WebhookService, get_webhook_service
from tutormarket.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/payments", tags=["payments"])
wallet_router = APIRouter(prefix="/wallet", tags=["wallet"])
webhook_router = APIRouter(prefix="/payments/webhooks", tags=["webhooks"])


@router.post("/initiate", response_model=PaymentInitiateRead)
async def initiate_payment(
    payload: PaymentInitiateRequest,
    service: PaymentsService = Depends(get_payments_service),
    current_user: AuthContext = Depends(get_current_user),
) -> PaymentInitiateRead:
    """Start a gateway checkout for a booking."""
    checkout = await service.initiate_payment(payload.booking_id, payload.method, current_user)
    return PaymentInitiateRead(payment_url=checkout.url, reference=checkout.reference, method=payload.method)


@router.post("/verify", response_model=PaymentVerifyRead)
async def verify_payment(
    payload: PaymentVerifyRequest,
    service: PaymentsService = Depends(get_payments_service),
    current_user: AuthContext = Depends(get_current_user),
) -> PaymentVerifyRead:
    """Confirm a checkout from the client after the gateway redirect."""
    result = await service.verify_payment(payload.reference, current_user)
    return PaymentVerifyRead(
        verified=result.outcome in (ReconciliationOutcome.PROCESSED, ReconciliationOutcome.DUPLICATE),
        duplicate=result.duplicate,
        booking=BookingRead.model_validate(result.booking),
    )


@router.get("/my", response_model=Page[PaymentRead])
async def list_my_payments(
    pagination=Depends(get_pagination_params),
    service: PaymentsService = Depends(get_payments_service),
    current_user: AuthContext = Depends(get_current_user),
) -> Page[PaymentRead]:
    items, total = await service.list_my_payments(current_user, pagination.limit, pagination.offset)
    serialized = [PaymentRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@wallet_router.get("", response_model=WalletRead)
async def get_wallet(
    service: PaymentsService = Depends(get_payments_service),
    current_user: AuthContext = Depends(get_current_user),
) -> WalletRead:
    return WalletRead.model_validate(await service.get_wallet(current_user))


@wallet_router.post("/pay", response_model=WalletPayRead)
async def pay_with_wallet(
    payload: WalletPayRequest,
    service: PaymentsService = Depends(get_payments_service),
    current_user: AuthContext = Depends(get_current_user),
) -> WalletPayRead:
    """Pay a pending booking from the wallet balance."""
    booking, wallet = await service.pay_with_wallet(payload.booking_id, current_user)
    return WalletPayRead(booking=BookingRead.model_validate(booking), wallet=WalletRead.model_validate(wallet))


@wallet_router.post("/fund", response_model=WalletRead)
async def fund_wallet(
    payload: WalletFundRequest,
    service: PaymentsService = Depends(get_payments_service),
    current_user: AuthContext = Depends(require_admin),
) -> WalletRead:
    wallet = await service.fund_wallet(payload.user_id, payload.amount, current_user)
    return WalletRead.model_validate(wallet)


async def _dispatch(gateway: PaymentGatewayEnum, request: Request, service: WebhookService) -> WebhookAck:
    raw_body = await request.body()
    return await service.handle(gateway, raw_body, request.headers)


@webhook_router.post("/stripe", response_model=WebhookAck, response_model_exclude_none=True)
async def stripe_webhook(request: Request, service: WebhookService = Depends(get_webhook_service)) -> WebhookAck:
    return await _dispatch(PaymentGatewayEnum.STRIPE, request, service)


@webhook_router.post("/flutterwave", response_model=WebhookAck, response_model_exclude_none=True)
async def flutterwave_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
) -> WebhookAck:
    return await _dispatch(PaymentGatewayEnum.FLUTTERWAVE, request, service)


@webhook_router.post("/paystack", response_model=WebhookAck, response_model_exclude_none=True)
async def paystack_webhook(request: Request, service: WebhookService = Depends(get_webhook_service)) -> WebhookAck:
    return await _dispatch(PaymentGatewayEnum.PAYSTACK, request, service)
