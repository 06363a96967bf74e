"""SavedDeal model for per-user deal bookmarks."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flashdeals.models.base import Base, UTCDateTime, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from flashdeals.models.user import User
    from flashdeals.models.deal import Deal


class SavedDeal(UUIDPrimaryKeyMixin, Base):
    """Tracks which user bookmarked which deal."""

    __tablename__ = "saved_deals"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    deal_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    saved_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "deal_id", name="uq_user_saved_deal"),
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="saved_deals")
    deal: Mapped["Deal"] = relationship(back_populates="saves")

    def __repr__(self) -> str:
        return f"<SavedDeal(user={self.user_id}, deal={self.deal_id})>"
