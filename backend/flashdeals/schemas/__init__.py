"""Pydantic schemas for the FlashDeals API.

All request/response models are defined here for easy import.
"""

from flashdeals.schemas.common import ApiResponse, ErrorDetail, ErrorResponse, ListMeta
from flashdeals.schemas.deal import (
    ClaimedDealResponse,
    ClaimResponse,
    DealCreateRequest,
    DealResponse,
    DealUpdateRequest,
    MerchantBrief,
    RecurrenceRunResponse,
    SavedDealResponse,
)
from flashdeals.schemas.merchant import MerchantCreateRequest, MerchantResponse, MerchantUpdateRequest
from flashdeals.schemas.notification import (
    MarkAllReadResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from flashdeals.schemas.audit import AuditLogResponse, AuditStatsResponse
from flashdeals.schemas.health import HealthCheckResponse
from flashdeals.schemas.auth import (
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserBrief,
    UserResponse,
)

__all__ = [
    # Common
    "ApiResponse",
    "ErrorDetail",
    "ErrorResponse",
    "ListMeta",
    # Deal
    "DealResponse",
    "DealCreateRequest",
    "DealUpdateRequest",
    "MerchantBrief",
    "ClaimResponse",
    "ClaimedDealResponse",
    "SavedDealResponse",
    "RecurrenceRunResponse",
    # Merchant
    "MerchantResponse",
    "MerchantCreateRequest",
    "MerchantUpdateRequest",
    # Notification
    "NotificationResponse",
    "UnreadCountResponse",
    "MarkAllReadResponse",
    # Audit
    "AuditLogResponse",
    "AuditStatsResponse",
    # Health
    "HealthCheckResponse",
    # Auth
    "LoginRequest",
    "RegisterRequest",
    "TokenResponse",
    "UserBrief",
    "UserResponse",
]
