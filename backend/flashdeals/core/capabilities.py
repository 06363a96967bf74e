"""Role-based capability helpers.

Endpoints declare the capability they need; the mapping from role to
capability set lives here and nowhere else.
"""

from typing import Dict, FrozenSet

from flashdeals.core.exceptions import AuthorizationError
from flashdeals.models.user import ROLE_CUSTOMER, ROLE_MERCHANT, ROLE_SUPER_MERCHANT

DEALS_CLAIM = "deals.claim"
DEALS_SAVE = "deals.save"
DEALS_MANAGE = "deals.manage"
DEALS_MANAGE_ANY = "deals.manage_any"
MERCHANTS_MANAGE = "merchants.manage"
NOTIFICATIONS_READ = "notifications.read"
AUDIT_READ = "audit.read"
RECURRENCE_RUN = "recurrence.run"
USERS_PROMOTE = "users.promote"

_CUSTOMER_SCOPES = frozenset({
    DEALS_CLAIM,
    DEALS_SAVE,
    NOTIFICATIONS_READ,
})

ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    ROLE_CUSTOMER: _CUSTOMER_SCOPES,
    ROLE_MERCHANT: _CUSTOMER_SCOPES | {
        DEALS_MANAGE,
        MERCHANTS_MANAGE,
        AUDIT_READ,
    },
    ROLE_SUPER_MERCHANT: _CUSTOMER_SCOPES | {
        DEALS_MANAGE,
        DEALS_MANAGE_ANY,
        MERCHANTS_MANAGE,
        AUDIT_READ,
        RECURRENCE_RUN,
        USERS_PROMOTE,
    },
}


def capabilities_for(role: str) -> FrozenSet[str]:
    """Return the capability set granted to a role (empty for unknown roles)."""
    return ROLE_CAPABILITIES.get((role or "").lower(), frozenset())


def has_capability(role: str, capability: str) -> bool:
    return capability in capabilities_for(role)


def require_capability(role: str, capability: str) -> None:
    """Raise AuthorizationError when the role lacks ``capability``."""
    if not has_capability(role, capability):
        raise AuthorizationError(f"Role '{role}' is missing capability '{capability}'")
