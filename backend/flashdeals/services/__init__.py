"""Services module for business logic and data operations.

Service classes take a request-scoped AsyncSession and hold the rules of
the FlashDeals platform; the API layer only translates HTTP to calls.
"""

from flashdeals.services.audit_service import AuditService, AuditSink, NullAuditSink
from flashdeals.services.auth_service import AuthService, Identity
from flashdeals.services.deal_service import DealFilter, DealService
from flashdeals.services.merchant_service import MerchantService
from flashdeals.services.notification_service import NotificationService

__all__ = [
    "AuditService",
    "AuditSink",
    "NullAuditSink",
    "AuthService",
    "Identity",
    "DealFilter",
    "DealService",
    "MerchantService",
    "NotificationService",
]
