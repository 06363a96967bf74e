"""Deal model representing a time-boxed, capacity-bounded merchant offer."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, Text, ForeignKey, Boolean, Numeric, Integer, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flashdeals.models.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from flashdeals.models.merchant import Merchant
    from flashdeals.models.deal_claim import DealClaim
    from flashdeals.models.saved_deal import SavedDeal

INTERVAL_DAILY = "daily"
INTERVAL_WEEKLY = "weekly"
INTERVAL_MONTHLY = "monthly"

RECURRING_INTERVALS = (INTERVAL_DAILY, INTERVAL_WEEKLY, INTERVAL_MONTHLY)


class Deal(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A discount offer published by a merchant.

    A deal is claimable while it is active, the current time falls in
    [start_time, end_time) and current_redemptions < max_redemptions.
    Expiry is computed at read time; nothing flips a flag when end_time
    passes.
    """

    __tablename__ = "deals"

    merchant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("merchants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Content
    title: Mapped[str] = mapped_column(String(200), nullable=False, comment="Deal title")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Pricing
    original_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Regular price"
    )
    discounted_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Price while the deal is live"
    )
    discount_percentage: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Derived discount, integer 0-100"
    )

    # Time window
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Capacity
    max_redemptions: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    current_redemptions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="Merchant-controlled override; false makes the deal unclaimable"
    )

    # Recurrence
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_interval: Mapped[Optional[str]] = mapped_column(
        String(10),
        nullable=True,
        comment="'daily', 'weekly' or 'monthly'"
    )
    last_recurred_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Presentation
    cover_color: Mapped[str] = mapped_column(String(30), nullable=False, default="bg-blue-500")
    deal_emoji: Mapped[str] = mapped_column(String(8), nullable=False, default="🏷️")

    __table_args__ = (
        CheckConstraint("max_redemptions > 0", name="ck_deals_max_redemptions_positive"),
        CheckConstraint(
            "current_redemptions >= 0 AND current_redemptions <= max_redemptions",
            name="ck_deals_redemptions_within_capacity",
        ),
        CheckConstraint("discounted_price <= original_price", name="ck_deals_price_order"),
        CheckConstraint("end_time > start_time", name="ck_deals_time_order"),
        Index("idx_deals_active_end_time", "is_active", "end_time"),
        Index("idx_deals_recurring_end_time", "is_recurring", "end_time"),
    )

    # Relationships
    merchant: Mapped["Merchant"] = relationship(back_populates="deals")
    claims: Mapped[List["DealClaim"]] = relationship(
        back_populates="deal", cascade="all, delete-orphan"
    )
    saves: Mapped[List["SavedDeal"]] = relationship(
        back_populates="deal", cascade="all, delete-orphan"
    )

    @property
    def remaining_redemptions(self) -> int:
        return max(0, self.max_redemptions - self.current_redemptions)

    def __repr__(self) -> str:
        return (
            f"<Deal(id={self.id}, title='{self.title[:50]}', "
            f"redemptions={self.current_redemptions}/{self.max_redemptions})>"
        )
