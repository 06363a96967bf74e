"""Deal Pydantic schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from flashdeals.models.base import utcnow
from flashdeals.models.deal import Deal
from flashdeals.services.lifecycle import deal_state


class MerchantBrief(BaseModel):
    """Brief merchant information for deal responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    category: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class DealResponse(BaseModel):
    """Standard deal response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    merchant_id: UUID
    title: str
    description: Optional[str] = None
    category: str
    original_price: Decimal
    discounted_price: Decimal
    discount_percentage: int
    start_time: datetime
    end_time: datetime
    max_redemptions: int
    current_redemptions: int
    remaining_redemptions: int
    is_active: bool
    is_recurring: bool
    recurring_interval: Optional[str] = None
    cover_color: Optional[str] = None
    deal_emoji: Optional[str] = None
    created_at: datetime
    state: Optional[str] = None
    merchant: Optional[MerchantBrief] = None

    @classmethod
    def from_deal(cls, deal: Deal, now: Optional[datetime] = None) -> "DealResponse":
        """Build a response with ``state`` evaluated at ``now``."""
        response = cls.model_validate(deal)
        response.state = deal_state(deal, now or utcnow()).value
        return response


class DealCreateRequest(BaseModel):
    """Request body for publishing a deal."""

    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: str = Field(min_length=1, max_length=50)
    original_price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    discounted_price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    start_time: datetime
    end_time: datetime
    max_redemptions: Optional[int] = Field(default=None, gt=0)
    is_recurring: bool = False
    recurring_interval: Optional[Literal["daily", "weekly", "monthly"]] = None
    cover_color: Optional[str] = Field(default=None, max_length=30)
    deal_emoji: Optional[str] = Field(default=None, max_length=8)


class DealUpdateRequest(BaseModel):
    """Partial update; omitted fields stay as they are."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    original_price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    discounted_price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    max_redemptions: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None
    is_recurring: Optional[bool] = None
    recurring_interval: Optional[Literal["daily", "weekly", "monthly"]] = None
    cover_color: Optional[str] = Field(default=None, max_length=30)
    deal_emoji: Optional[str] = Field(default=None, max_length=8)


class ClaimResponse(BaseModel):
    """A user's claim on a deal."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    deal_id: UUID
    status: str
    claimed_at: datetime
    used_at: Optional[datetime] = None


class ClaimedDealResponse(ClaimResponse):
    """Claim with the claimed deal embedded."""

    deal: DealResponse


class SavedDealResponse(BaseModel):
    """A bookmarked deal."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    deal_id: UUID
    saved_at: datetime
    deal: Optional[DealResponse] = None


class RecurrenceRunResponse(BaseModel):
    recurred: int
