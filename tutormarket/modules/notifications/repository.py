"""Notifications repository layer."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from tutormarket.core.enums import NotificationTypeEnum
from tutormarket.modules.notifications.models import Notification


class NotificationsRepository:
    """DB operations for notifications domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def savepoint(self) -> AsyncSessionTransaction:
        """Nested transaction so a failed insert does not poison the outer one."""
        return self.session.begin_nested()

    async def create_notification(
        self,
        user_id: UUID,
        type: NotificationTypeEnum,
        title: str,
        message: str,
        data: dict,
    ) -> Notification:
        notification = Notification(user_id=user_id, type=type, title=title, message=message, data=data)
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def get_notification_by_id(self, notification_id: UUID) -> Notification | None:
        return await self.session.get(Notification, notification_id)

    async def list_notifications_for_user(
        self,
        user_id: UUID,
        unread_only: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[Notification], int]:
        base_stmt: Select[tuple[Notification]] = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            base_stmt = base_stmt.where(Notification.is_read.is_(False))
        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(Notification.created_at.desc()).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return items, total

    async def count_unread(self, user_id: UUID) -> int:
        stmt = select(func.count()).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
        return int((await self.session.scalar(stmt)) or 0)

    async def mark_read(self, notification: Notification, read_at: datetime) -> Notification:
        notification.is_read = True
        notification.read_at = read_at
        await self.session.flush()
        return notification
