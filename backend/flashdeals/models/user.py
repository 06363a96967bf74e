"""User model for authentication and role-based access."""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flashdeals.models.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from flashdeals.models.merchant import Merchant
    from flashdeals.models.saved_deal import SavedDeal
    from flashdeals.models.deal_claim import DealClaim
    from flashdeals.models.notification import Notification

ROLE_CUSTOMER = "customer"
ROLE_MERCHANT = "merchant"
ROLE_SUPER_MERCHANT = "super_merchant"

ROLES = (ROLE_CUSTOMER, ROLE_MERCHANT, ROLE_SUPER_MERCHANT)


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Application user.

    Supports email/password authentication with bcrypt hashing. The role
    decides which capabilities the user has (see core.capabilities).
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False, index=True,
        comment="User email address (unique)"
    )
    username: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True,
        comment="Display name"
    )
    hashed_password: Mapped[str] = mapped_column(
        String(128), nullable=False,
        comment="bcrypt hashed password"
    )
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ROLE_CUSTOMER,
        comment="'customer', 'merchant' or 'super_merchant'"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
        comment="Whether user account is active"
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True,
        comment="Last login timestamp"
    )

    # Relationships
    merchants: Mapped[List["Merchant"]] = relationship(back_populates="owner")
    saved_deals: Mapped[List["SavedDeal"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    claims: Mapped[List["DealClaim"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    notifications: Mapped[List["Notification"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role='{self.role}')>"
