"""FastAPI dependency injection providers."""

import uuid
from typing import AsyncGenerator, Callable, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.core.capabilities import require_capability
from flashdeals.core.exceptions import AuthenticationError
from flashdeals.db.session import async_session_factory
from flashdeals.models.user import User
from flashdeals.services.audit_service import AuditSink
from flashdeals.services.auth_service import AuthService, Identity, decode_access_token
from flashdeals.services.deal_service import DealService

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for request-scoped usage.

    The session is committed on success or rolled back on error, and always
    closed after the request completes.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


_audit_sink: Optional[AuditSink] = None


def get_audit_sink() -> AuditSink:
    """Process-wide best-effort event writer, independent of the request session."""
    global _audit_sink

    if _audit_sink is None:
        _audit_sink = AuditSink(async_session_factory)
    return _audit_sink


def get_deal_service(
    db: AsyncSession = Depends(get_db),
    sink: AuditSink = Depends(get_audit_sink),
) -> DealService:
    return DealService(db, sink=sink)


def _user_id_from_credentials(
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[uuid.UUID]:
    if not credentials:
        return None
    user_id_str = decode_access_token(credentials.credentials)
    if not user_id_str:
        return None
    try:
        return uuid.UUID(user_id_str)
    except ValueError:
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the bearer token, return the authenticated user.

    Raises AuthenticationError (401) if the token is missing or invalid or
    the user is gone or deactivated.
    """
    if not credentials:
        raise AuthenticationError("Authentication required")

    user_id = _user_id_from_credentials(credentials)
    if not user_id:
        raise AuthenticationError("Invalid token")

    user = await AuthService(db).get_user_by_id(user_id)
    if not user or not user.is_active:
        raise AuthenticationError("User not found")

    return user


async def get_identity(user: User = Depends(get_current_user)) -> Identity:
    """The caller's (user_id, role); the role is read from the database."""
    return Identity.of(user)


def require(capability: str) -> Callable:
    """Dependency factory: resolve the caller and check one capability.

    Usage:
        @router.post("/merchants")
        async def create(identity: Identity = Depends(require(MERCHANTS_MANAGE))):
            ...
    """

    async def _check(identity: Identity = Depends(get_identity)) -> Identity:
        require_capability(identity.role, capability)
        return identity

    return _check
