"""Payment gateway adapters.

Each adapter turns a provider's checkout, verification and webhook APIs into
the same three calls so the reconciliation code never branches on provider.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol
from uuid import UUID

import httpx
import stripe

from tutormarket.core.config import Settings, get_settings
from tutormarket.core.enums import PaymentGatewayEnum
from tutormarket.modules.booking.models import Booking
from tutormarket.shared.exceptions import (
    GatewayUnavailableException,
    PaymentGatewayException,
    WebhookSignatureException,
)
from tutormarket.shared.utils import from_minor_units, to_minor_units, to_money, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    reference: str
    url: str


@dataclass(frozen=True, slots=True)
class GatewayVerification:
    """Server-side view of a transaction, fetched from the provider."""

    success: bool
    reference: str
    amount: Decimal | None = None
    currency: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class GatewayEvent:
    """Signature-verified webhook delivery."""

    gateway: PaymentGatewayEnum
    event_type: str
    is_successful_charge: bool
    reference: str | None = None
    booking_id: UUID | None = None
    amount: Decimal | None = None
    currency: str | None = None


class PaymentGateway(Protocol):
    name: PaymentGatewayEnum

    async def create_checkout(
        self,
        booking: Booking,
        amount: Decimal,
        currency: str,
        customer_email: str,
    ) -> CheckoutSession: ...

    async def verify_transaction(self, reference: str) -> GatewayVerification: ...

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> GatewayEvent: ...


def _parse_json_body(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError) as exc:
        raise WebhookSignatureException("Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise WebhookSignatureException("Webhook body must be a JSON object")
    return payload


def _json_object(value: Any) -> dict[str, Any]:
    """Nested JSON object of a gateway payload; anything else reads as empty."""
    return value if isinstance(value, dict) else {}


def _currency_code(value: Any) -> str | None:
    return value.upper() if isinstance(value, str) and value else None


def _parse_booking_id(value: Any) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        logger.warning("Ignoring malformed booking id in gateway metadata: %r", value)
        return None


def _parse_amount(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return to_money(value)
    except (InvalidOperation, ValueError):
        return None


def build_transaction_reference(booking: Booking) -> str:
    """Reference sent to Flutterwave/Paystack; unique per checkout attempt."""
    return f"booking_{booking.id}_{int(utc_now().timestamp() * 1000)}"


class _HttpGateway:
    """Shared httpx plumbing for the REST gateways."""

    def __init__(
        self,
        secret_key: str,
        base_url: str,
        timeout_seconds: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._secret_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise PaymentGatewayException(
                f"{self.name} returned HTTP {exc.response.status_code}",
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise PaymentGatewayException(f"{self.name} request failed") from exc
        if not isinstance(payload, dict):
            raise PaymentGatewayException(f"{self.name} returned an unexpected payload")
        return payload


class FlutterwaveGateway(_HttpGateway):
    """Flutterwave Standard checkout."""

    name = PaymentGatewayEnum.FLUTTERWAVE

    def __init__(
        self,
        secret_key: str,
        webhook_hash: str | None,
        base_url: str,
        public_base_url: str,
        timeout_seconds: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(secret_key, base_url, timeout_seconds, transport)
        self._webhook_hash = webhook_hash
        self._public_base_url = public_base_url.rstrip("/")

    async def create_checkout(
        self,
        booking: Booking,
        amount: Decimal,
        currency: str,
        customer_email: str,
    ) -> CheckoutSession:
        reference = build_transaction_reference(booking)
        payload = await self._request(
            "POST",
            "/payments",
            json={
                "tx_ref": reference,
                "amount": str(to_money(amount)),
                "currency": currency,
                "redirect_url": f"{self._public_base_url}/payment-success",
                "customer": {"email": customer_email},
                "meta": {"booking_id": str(booking.id)},
            },
        )
        link = _json_object(payload.get("data")).get("link")
        if payload.get("status") != "success" or not link:
            raise PaymentGatewayException(payload.get("message") or "Failed to initialize Flutterwave payment")
        return CheckoutSession(reference=reference, url=link)

    async def verify_transaction(self, reference: str) -> GatewayVerification:
        payload = await self._request(
            "GET",
            "/transactions/verify_by_reference",
            params={"tx_ref": reference},
        )
        data = _json_object(payload.get("data"))
        success = payload.get("status") == "success" and data.get("status") == "successful"
        currency = data.get("currency")
        return GatewayVerification(
            success=success,
            reference=data.get("tx_ref") or reference,
            amount=_parse_amount(data.get("amount")),
            currency=_currency_code(currency),
            metadata=_json_object(data.get("meta")),
        )

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> GatewayEvent:
        if not self._webhook_hash:
            raise GatewayUnavailableException("Flutterwave webhooks are not configured")
        signature = headers.get("verif-hash")
        if not signature or not hmac.compare_digest(signature, self._webhook_hash):
            raise WebhookSignatureException("Invalid Flutterwave webhook signature")

        payload = _parse_json_body(raw_body)
        event_type = str(payload.get("event") or payload.get("event.type") or "")
        data = _json_object(payload.get("data"))
        currency = data.get("currency")
        return GatewayEvent(
            gateway=self.name,
            event_type=event_type,
            is_successful_charge=event_type == "charge.completed" and data.get("status") == "successful",
            reference=data.get("tx_ref"),
            booking_id=_parse_booking_id(_json_object(data.get("meta")).get("booking_id")),
            amount=_parse_amount(data.get("amount")),
            currency=_currency_code(currency),
        )


class PaystackGateway(_HttpGateway):
    """Paystack transaction API. Amounts travel in minor units."""

    name = PaymentGatewayEnum.PAYSTACK

    def __init__(
        self,
        secret_key: str,
        base_url: str,
        public_base_url: str,
        timeout_seconds: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(secret_key, base_url, timeout_seconds, transport)
        self._public_base_url = public_base_url.rstrip("/")

    async def create_checkout(
        self,
        booking: Booking,
        amount: Decimal,
        currency: str,
        customer_email: str,
    ) -> CheckoutSession:
        reference = build_transaction_reference(booking)
        payload = await self._request(
            "POST",
            "/transaction/initialize",
            json={
                "email": customer_email,
                "amount": to_minor_units(amount),
                "currency": currency,
                "reference": reference,
                "callback_url": f"{self._public_base_url}/payment-success",
                "metadata": {"booking_id": str(booking.id)},
            },
        )
        data = _json_object(payload.get("data"))
        if not payload.get("status") or not data.get("authorization_url"):
            raise PaymentGatewayException(payload.get("message") or "Failed to initialize Paystack transaction")
        return CheckoutSession(reference=data.get("reference") or reference, url=data["authorization_url"])

    async def verify_transaction(self, reference: str) -> GatewayVerification:
        payload = await self._request("GET", f"/transaction/verify/{reference}")
        data = _json_object(payload.get("data"))
        success = bool(payload.get("status")) and data.get("status") == "success"
        amount = data.get("amount")
        currency = data.get("currency")
        return GatewayVerification(
            success=success,
            reference=data.get("reference") or reference,
            amount=from_minor_units(amount) if amount is not None else None,
            currency=_currency_code(currency),
            metadata=_json_object(data.get("metadata")),
        )

    def signature_for(self, raw_body: bytes) -> str:
        return hmac.new(self._secret_key.encode(), raw_body, hashlib.sha512).hexdigest()

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> GatewayEvent:
        signature = headers.get("x-paystack-signature")
        if not signature or not hmac.compare_digest(signature, self.signature_for(raw_body)):
            raise WebhookSignatureException("Invalid Paystack webhook signature")

        payload = _parse_json_body(raw_body)
        event_type = str(payload.get("event") or "")
        data = _json_object(payload.get("data"))
        amount = data.get("amount")
        currency = data.get("currency")
        return GatewayEvent(
            gateway=self.name,
            event_type=event_type,
            is_successful_charge=event_type == "charge.success",
            reference=data.get("reference"),
            booking_id=_parse_booking_id(_json_object(data.get("metadata")).get("booking_id")),
            amount=from_minor_units(amount) if amount is not None else None,
            currency=_currency_code(currency),
        )


class StripeGateway:
    """Stripe Checkout Sessions through the official SDK."""

    name = PaymentGatewayEnum.STRIPE

    def __init__(self, secret_key: str | None, webhook_secret: str | None, public_base_url: str) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._public_base_url = public_base_url.rstrip("/")

    def _require_api_key(self) -> str:
        if not self._secret_key:
            raise GatewayUnavailableException("Stripe is not configured")
        return self._secret_key

    async def create_checkout(
        self,
        booking: Booking,
        amount: Decimal,
        currency: str,
        customer_email: str,
    ) -> CheckoutSession:
        api_key = self._require_api_key()
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=api_key,
                mode="payment",
                customer_email=customer_email,
                client_reference_id=str(booking.id),
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "product_data": {"name": "Tutoring session"},
                            "unit_amount": to_minor_units(amount),
                        },
                        "quantity": 1,
                    },
                ],
                metadata={"booking_id": str(booking.id)},
                success_url=f"{self._public_base_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self._public_base_url}/bookings/{booking.id}",
            )
        except stripe.StripeError as exc:
            raise PaymentGatewayException(f"Stripe checkout failed: {exc.user_message or exc}") from exc
        return CheckoutSession(reference=session.id, url=session.url)

    async def verify_transaction(self, reference: str) -> GatewayVerification:
        api_key = self._require_api_key()
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.retrieve, reference, api_key=api_key)
        except stripe.StripeError as exc:
            raise PaymentGatewayException(f"Stripe verification failed: {exc.user_message or exc}") from exc
        metadata = session.metadata
        booking_id = metadata["booking_id"] if metadata and "booking_id" in metadata else None
        return GatewayVerification(
            success=session.payment_status == "paid",
            reference=session.id,
            amount=from_minor_units(session.amount_total) if session.amount_total is not None else None,
            currency=session.currency.upper() if session.currency else None,
            metadata={"booking_id": booking_id},
        )

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> GatewayEvent:
        if not self._webhook_secret:
            raise GatewayUnavailableException("Stripe webhooks are not configured")
        signature = headers.get("stripe-signature")
        if not signature:
            raise WebhookSignatureException("Missing Stripe signature")
        try:
            stripe.Webhook.construct_event(raw_body, signature, self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise WebhookSignatureException("Invalid Stripe webhook signature") from exc

        payload = _parse_json_body(raw_body)
        event_type = str(payload.get("type") or "")
        session = _json_object(_json_object(payload.get("data")).get("object"))
        amount_total = session.get("amount_total")
        currency = session.get("currency")
        return GatewayEvent(
            gateway=self.name,
            event_type=event_type,
            is_successful_charge=(
                event_type == "checkout.session.completed" and session.get("payment_status", "paid") == "paid"
            ),
            reference=session.get("id"),
            booking_id=_parse_booking_id(_json_object(session.get("metadata")).get("booking_id")),
            amount=from_minor_units(amount_total) if amount_total is not None else None,
            currency=_currency_code(currency),
        )


class GatewayRegistry:
    """Builds the configured adapter for a gateway on demand."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self.transport = transport

    def get(self, gateway: PaymentGatewayEnum) -> PaymentGateway:
        settings = self.settings
        match gateway:
            case PaymentGatewayEnum.STRIPE:
                if not settings.stripe_secret_key and not settings.stripe_webhook_secret:
                    raise GatewayUnavailableException("Stripe is not configured")
                return StripeGateway(
                    settings.stripe_secret_key,
                    settings.stripe_webhook_secret,
                    settings.public_base_url,
                )
            case PaymentGatewayEnum.FLUTTERWAVE:
                if not settings.flutterwave_secret_key:
                    raise GatewayUnavailableException("Flutterwave is not configured")
                return FlutterwaveGateway(
                    secret_key=settings.flutterwave_secret_key,
                    webhook_hash=settings.flutterwave_webhook_hash,
                    base_url=settings.flutterwave_base_url,
                    public_base_url=settings.public_base_url,
                    timeout_seconds=settings.gateway_timeout_seconds,
                    transport=self.transport,
                )
            case PaymentGatewayEnum.PAYSTACK:
                if not settings.paystack_secret_key:
                    raise GatewayUnavailableException("Paystack is not configured")
                return PaystackGateway(
                    secret_key=settings.paystack_secret_key,
                    base_url=settings.paystack_base_url,
                    public_base_url=settings.public_base_url,
                    timeout_seconds=settings.gateway_timeout_seconds,
                    transport=self.transport,
                )
            case PaymentGatewayEnum.WALLET | PaymentGatewayEnum.MANUAL:
                raise GatewayUnavailableException(f"{gateway} payments have no external gateway")


def get_gateway_registry() -> GatewayRegistry:
    """Dependency provider for gateway adapters."""
    return GatewayRegistry(get_settings())
