"""Merchant Pydantic schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MerchantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    category: str
    latitude: float
    longitude: float
    address: str
    phone: Optional[str] = None
    image_url: Optional[str] = None
    rating: float = 0.0
    review_count: int = 0
    is_active: bool
    created_at: datetime


class MerchantCreateRequest(BaseModel):
    """Request body for registering a merchant."""

    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: str = Field(min_length=1, max_length=50)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: str = Field(min_length=1, max_length=500)
    phone: Optional[str] = Field(default=None, max_length=30)
    image_url: Optional[str] = Field(default=None, max_length=1000)


class MerchantUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=50)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)
    phone: Optional[str] = Field(default=None, max_length=30)
    image_url: Optional[str] = Field(default=None, max_length=1000)
