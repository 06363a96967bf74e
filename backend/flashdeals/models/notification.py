"""Notification model for in-app user messages."""

import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Text, ForeignKey, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flashdeals.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from flashdeals.models.user import User


class Notification(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A message shown in the user's notification list."""

    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    type: Mapped[str] = mapped_column(
        String(30), nullable=False,
        comment="e.g. 'deal_claimed', 'deal_saved', 'deal_recurred'"
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    deal_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("deals.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "is_read"),
    )

    user: Mapped["User"] = relationship(back_populates="notifications")

    def __repr__(self) -> str:
        return f"<Notification(user={self.user_id}, type={self.type}, read={self.is_read})>"
