"""Merchant model representing a local business that publishes deals."""

import uuid
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, Text, ForeignKey, Boolean, Float, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flashdeals.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from flashdeals.models.user import User
    from flashdeals.models.deal import Deal


class Merchant(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A business location owned by a merchant-role user.

    Merchants are deactivated rather than deleted so their deal and claim
    history stays intact. ``owner_id`` is null for unclaimed legacy rows.
    """

    __tablename__ = "merchants"

    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Owning user account"
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Location
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    address: Mapped[str] = mapped_column(String(500), nullable=False)

    # Contact / presentation
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="Soft-delete flag"
    )

    __table_args__ = (
        Index("idx_merchants_lat_lng", "latitude", "longitude"),
    )

    # Relationships
    owner: Mapped[Optional["User"]] = relationship(back_populates="merchants")
    deals: Mapped[List["Deal"]] = relationship(back_populates="merchant")

    def __repr__(self) -> str:
        return f"<Merchant(id={self.id}, name='{self.name}', active={self.is_active})>"
