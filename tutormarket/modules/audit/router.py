"""Audit API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from tutormarket.modules.audit.schemas import AuditLogRead
from tutormarket.modules.audit.service import AuditService, get_audit_service
from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.identity.service import get_current_user
from tutormarket.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/logs", response_model=Page[AuditLogRead])
async def list_logs(
    action: str | None = Query(default=None, max_length=128),
    entity_id: str | None = Query(default=None, max_length=128),
    pagination=Depends(get_pagination_params),
    service: AuditService = Depends(get_audit_service),
    current_user: AuthContext = Depends(get_current_user),
) -> Page[AuditLogRead]:
    """List audit logs."""
    items, total = await service.list_logs(
        current_user,
        action,
        entity_id,
        pagination.limit,
        pagination.offset,
    )
    serialized = [AuditLogRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)
