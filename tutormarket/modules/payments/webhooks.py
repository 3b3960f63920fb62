"""Gateway webhook processing.

Deliveries are verified before anything touches the database, then funnelled
into :class:`PaymentReconciliationService`. Gateways retry on non-2xx, so
every path here is safe to replay.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.database import get_db_session
from tutormarket.core.enums import PaymentGatewayEnum
from tutormarket.core.metrics import record_webhook_outcome
from tutormarket.modules.audit.repository import AuditRepository
from tutormarket.modules.audit.service import PAYMENT_WEBHOOK_UNMATCHED, AuditService
from tutormarket.modules.payments.gateways import GatewayEvent, GatewayRegistry, get_gateway_registry
from tutormarket.modules.payments.reconciliation import PaymentReconciliationService, ReconciliationOutcome
from tutormarket.modules.payments.schemas import WebhookAck
from tutormarket.modules.payments.service import build_reconciliation_service
from tutormarket.shared.exceptions import WebhookSignatureException

logger = logging.getLogger(__name__)

# Gateways whose webhook body is only a hint: the charge is re-read from their API.
REVERIFIED_GATEWAYS = frozenset({PaymentGatewayEnum.FLUTTERWAVE, PaymentGatewayEnum.PAYSTACK})


class WebhookService:
    """Turns a raw gateway delivery into at most one recorded payment."""

    def __init__(
        self,
        gateways: GatewayRegistry,
        reconciliation: PaymentReconciliationService,
        audit_service: AuditService,
    ) -> None:
        self.gateways = gateways
        self.reconciliation = reconciliation
        self.audit_service = audit_service

    async def handle(
        self,
        gateway_name: PaymentGatewayEnum,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> WebhookAck:
        gateway = self.gateways.get(gateway_name)
        try:
            event = gateway.parse_webhook(raw_body, headers)
        except WebhookSignatureException:
            logger.warning("Rejected %s webhook: signature verification failed", gateway_name)
            record_webhook_outcome(gateway_name, "invalid_signature")
            raise

        logger.info("Received %s webhook event %s", gateway_name, event.event_type or "<untyped>")
        if not event.is_successful_charge or not event.reference:
            record_webhook_outcome(gateway_name, "ignored")
            return WebhookAck()

        amount, currency = event.amount, event.currency
        if gateway_name in REVERIFIED_GATEWAYS:
            verification = await gateway.verify_transaction(event.reference)
            if not verification.success:
                logger.warning(
                    "%s webhook for %s not confirmed by gateway API; ignoring",
                    gateway_name,
                    event.reference,
                )
                record_webhook_outcome(gateway_name, "ignored")
                return WebhookAck()
            amount = verification.amount if verification.amount is not None else amount
            currency = verification.currency or currency

        result = await self.reconciliation.record_successful_charge(
            gateway=gateway_name,
            transaction_reference=event.reference,
            amount=amount,
            currency=currency,
            booking_id=event.booking_id,
            trigger=f"{gateway_name}_webhook",
        )

        if result.outcome == ReconciliationOutcome.UNMATCHED:
            await self._record_unmatched(event, amount, currency)
            return WebhookAck(matched=False)

        record_webhook_outcome(gateway_name, str(result.outcome))
        return WebhookAck(duplicate=result.duplicate)

    async def _record_unmatched(
        self,
        event: GatewayEvent,
        amount: Decimal | None,
        currency: str | None,
    ) -> None:
        logger.error(
            "Paid %s webhook %s could not be matched to a booking (booking_id=%s, amount=%s %s)",
            event.gateway,
            event.reference,
            event.booking_id,
            amount,
            currency,
        )
        record_webhook_outcome(event.gateway, "unmatched")
        await self.audit_service.record(
            PAYMENT_WEBHOOK_UNMATCHED,
            entity_type="payment",
            entity_id=event.reference,
            payload={
                "gateway": str(event.gateway),
                "event_type": event.event_type,
                "booking_id": str(event.booking_id) if event.booking_id else None,
                "amount": str(amount) if amount is not None else None,
                "currency": currency,
            },
        )


async def get_webhook_service(
    session: AsyncSession = Depends(get_db_session),
    gateways: GatewayRegistry = Depends(get_gateway_registry),
) -> WebhookService:
    """Dependency provider for webhook service."""
    return WebhookService(
        gateways=gateways,
        reconciliation=build_reconciliation_service(session),
        audit_service=AuditService(AuditRepository(session)),
    )
