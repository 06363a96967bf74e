"""Notification service for per-user in-app messages."""

import uuid
from typing import List, Optional

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.core.exceptions import NotFoundError, ValidationError
from flashdeals.models.notification import Notification

NOTIFICATION_FILTERS = ("all", "unread", "read")


class NotificationService:
    """Handles listing and read-state changes for a user's notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def notify(
        self,
        user_id: uuid.UUID,
        type: str,
        title: str,
        message: str,
        deal_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a notification in the current session."""
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            deal_id=deal_id,
        )
        self.db.add(notification)
        await self.db.flush()
        return notification

    async def list_for_user(
        self, user_id: uuid.UUID, filter: str = "all"
    ) -> List[Notification]:
        """Newest first, optionally limited to unread or read ones."""
        if filter not in NOTIFICATION_FILTERS:
            raise ValidationError(
                f"filter must be one of {', '.join(NOTIFICATION_FILTERS)}", field="filter"
            )

        stmt = select(Notification).where(Notification.user_id == user_id)
        if filter == "unread":
            stmt = stmt.where(Notification.is_read == False)
        elif filter == "read":
            stmt = stmt.where(Notification.is_read == True)
        stmt = stmt.order_by(Notification.created_at.desc())

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read == False,
            )
        )
        return result.scalar() or 0

    async def _get_owned(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotFoundError("Notification", notification_id)
        return notification

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        notification = await self._get_owned(notification_id, user_id)
        notification.is_read = True
        await self.db.flush()
        return notification

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        """Mark every unread notification as read. Returns how many changed."""
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read == False)
            .values(is_read=True)
        )
        return result.rowcount

    async def delete(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> None:
        notification = await self._get_owned(notification_id, user_id)
        await self.db.delete(notification)
        await self.db.flush()
