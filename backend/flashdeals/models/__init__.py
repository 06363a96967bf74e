"""SQLAlchemy models for FlashDeals.

All models are imported here so metadata.create_all sees every table.
"""

from flashdeals.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from flashdeals.models.user import User
from flashdeals.models.merchant import Merchant
from flashdeals.models.deal import Deal
from flashdeals.models.deal_claim import DealClaim
from flashdeals.models.saved_deal import SavedDeal
from flashdeals.models.notification import Notification
from flashdeals.models.audit_log import AuditLog

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "User",
    "Merchant",
    "Deal",
    "DealClaim",
    "SavedDeal",
    "Notification",
    "AuditLog",
]
