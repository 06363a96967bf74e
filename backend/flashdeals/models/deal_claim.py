"""DealClaim model tracking a user's redemption of one unit of a deal."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flashdeals.models.base import Base, UTCDateTime, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from flashdeals.models.user import User
    from flashdeals.models.deal import Deal

CLAIM_CLAIMED = "claimed"
CLAIM_USED = "used"
CLAIM_EXPIRED = "expired"

CLAIM_STATUSES = (CLAIM_CLAIMED, CLAIM_USED, CLAIM_EXPIRED)


class DealClaim(UUIDPrimaryKeyMixin, Base):
    """Links a user to a deal at the moment they claimed it.

    At most one non-expired claim may exist per (user, deal); the partial
    unique index enforces it at the database level.
    """

    __tablename__ = "deal_claims"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    deal_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=CLAIM_CLAIMED,
        comment="'claimed', 'used' or 'expired'"
    )
    claimed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    used_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index(
            "uq_deal_claims_active_user_deal",
            "user_id",
            "deal_id",
            unique=True,
            sqlite_where=text("status != 'expired'"),
            postgresql_where=text("status != 'expired'"),
        ),
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="claims")
    deal: Mapped["Deal"] = relationship(back_populates="claims")

    def __repr__(self) -> str:
        return f"<DealClaim(user={self.user_id}, deal={self.deal_id}, status={self.status})>"
