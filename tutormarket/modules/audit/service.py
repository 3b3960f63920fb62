"""Audit business logic layer."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.database import get_db_session
from tutormarket.modules.audit.models import AuditLog
from tutormarket.modules.audit.repository import AuditRepository
from tutormarket.modules.identity.context import AuthContext
from tutormarket.shared.exceptions import ForbiddenException

ADMIN_BOOKING_FIX_STATUS = "admin.booking.fix_status"
PAYMENT_WEBHOOK_UNMATCHED = "payment.webhook.unmatched"
WALLET_FUNDED = "wallet.funded"


class AuditService:
    """Service for writing and reading the audit log."""

    def __init__(self, repository: AuditRepository) -> None:
        self.repository = repository

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str | UUID | None,
        payload: dict[str, Any],
        actor: AuthContext | None = None,
    ) -> AuditLog:
        """Append one audit entry; ``actor`` is None for gateway-originated events."""
        return await self.repository.create_audit_log(
            actor_id=actor.user_id if actor else None,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            payload=payload,
        )

    async def list_logs(
        self,
        actor: AuthContext,
        action: str | None,
        entity_id: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[AuditLog], int]:
        """List audit logs (admin only)."""
        if not actor.is_admin:
            raise ForbiddenException("Only admin can view audit logs")
        return await self.repository.list_audit_logs(action, entity_id, limit=limit, offset=offset)


async def get_audit_service(session: AsyncSession = Depends(get_db_session)) -> AuditService:
    """Dependency provider for audit service."""
    return AuditService(AuditRepository(session))
