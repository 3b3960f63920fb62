"""Notifications business logic layer."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.database import get_db_session
from tutormarket.core.enums import NotificationTypeEnum
from tutormarket.modules.identity.context import AuthContext
from tutormarket.modules.notifications.models import Notification
from tutormarket.modules.notifications.repository import NotificationsRepository
from tutormarket.shared.exceptions import NotFoundException, UnauthorizedException
from tutormarket.shared.utils import utc_now

logger = logging.getLogger(__name__)


class NotificationEmitter:
    """Best-effort notification writer used as a side effect of domain transitions.

    A failure here is logged and swallowed: it must never roll back the
    booking or payment change that triggered it.
    """

    def __init__(self, repository: NotificationsRepository) -> None:
        self.repository = repository

    async def notify(
        self,
        user_id: UUID,
        type: NotificationTypeEnum,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> Notification | None:
        try:
            async with self.repository.savepoint():
                return await self.repository.create_notification(
                    user_id=user_id,
                    type=type,
                    title=title,
                    message=message,
                    data=data or {},
                )
        except Exception:
            logger.warning(
                "Failed to create %s notification for user %s",
                type,
                user_id,
                exc_info=True,
            )
            return None


class NotificationsService:
    """Notifications domain service."""

    def __init__(self, repository: NotificationsRepository) -> None:
        self.repository = repository

    async def list_my_notifications(
        self,
        actor: AuthContext,
        unread_only: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[Notification], int]:
        """List notifications for current user."""
        return await self.repository.list_notifications_for_user(actor.user_id, unread_only, limit, offset)

    async def count_unread(self, actor: AuthContext) -> int:
        return await self.repository.count_unread(actor.user_id)

    async def mark_read(self, notification_id: UUID, actor: AuthContext) -> Notification:
        """Mark one of the caller's notifications as read."""
        notification = await self.repository.get_notification_by_id(notification_id)
        if notification is None:
            raise NotFoundException("Notification not found")
        if notification.user_id != actor.user_id:
            raise UnauthorizedException("Only the recipient can mark a notification as read")
        if notification.is_read:
            return notification
        return await self.repository.mark_read(notification, utc_now())


async def get_notifications_service(session: AsyncSession = Depends(get_db_session)) -> NotificationsService:
    """Dependency provider for notifications service."""
    return NotificationsService(repository=NotificationsRepository(session))
