"""Authentication service: JWT tokens, password hashing, user management."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.config import settings
from flashdeals.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from flashdeals.models.user import (
    ROLE_CUSTOMER,
    ROLE_MERCHANT,
    ROLE_SUPER_MERCHANT,
    User,
)

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@dataclass(frozen=True)
class Identity:
    """Verified caller identity handed to the service layer."""

    user_id: uuid.UUID
    role: str

    @classmethod
    def of(cls, user: User) -> "Identity":
        return cls(user_id=user.id, role=user.role)


def hash_password(password: str) -> str:
    """Hash a plaintext password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a bcrypt hash.

    A stored value that is not a recognisable hash never matches.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (UnknownHashError, ValueError):
        return False


def create_access_token(user_id: uuid.UUID, role: str = ROLE_CUSTOMER) -> str:
    """Create a JWT access token for the given user ID and role."""
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[str]:
    """Decode a JWT token and return the user ID string, or None if invalid."""
    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        return payload.get("sub")
    except JWTError:
        return None


class AuthService:
    """Handles user registration, login, lookup and role promotion."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="auth_service")

    async def register(
        self,
        email: str,
        username: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        role: str = ROLE_CUSTOMER,
    ) -> User:
        """Register a new user. Raises ValidationError if email/username taken.

        Self-registration may pick ``customer`` or ``merchant``; super
        merchants are only created through promotion.
        """
        if role not in (ROLE_CUSTOMER, ROLE_MERCHANT):
            raise ValidationError("role must be 'customer' or 'merchant'", field="role")

        stmt = select(User).where(User.email == email)
        result = await self.db.execute(stmt)
        if result.scalar_one_or_none():
            raise ValidationError("Email is already registered", field="email")

        stmt = select(User).where(User.username == username)
        result = await self.db.execute(stmt)
        if result.scalar_one_or_none():
            raise ValidationError("Username is already taken", field="username")

        user = User(
            email=email,
            username=username,
            hashed_password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=role,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError("Email or username is already taken")

        self.logger.info("user_registered", user_id=str(user.id), role=role)
        return user

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        """Verify credentials and return user, or None if invalid."""
        stmt = select(User).where(User.email == email)
        result = await self.db.execute(stmt)
        user = result.scalar_one_or_none()

        if not user or not verify_password(password, user.hashed_password):
            return None

        if not user.is_active:
            return None

        user.last_login_at = datetime.now(timezone.utc)
        return user

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Fetch user by ID."""
        stmt = select(User).where(User.id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def promote_to_merchant(self, user_id: uuid.UUID) -> User:
        """Give a customer the merchant role. Super merchants keep their role."""
        user = await self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User", user_id)

        if user.role == ROLE_CUSTOMER:
            user.role = ROLE_MERCHANT
            await self.db.flush()
            self.logger.info("user_promoted", user_id=str(user_id), role=ROLE_MERCHANT)
        return user

    async def promote_to_super_merchant(self, actor: Identity, user_id: uuid.UUID) -> User:
        """Grant the super_merchant role. Only a super merchant may do this."""
        if actor.role != ROLE_SUPER_MERCHANT:
            raise AuthorizationError("Only super merchants can grant super merchant access")

        user = await self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User", user_id)

        user.role = ROLE_SUPER_MERCHANT
        await self.db.flush()
        self.logger.info(
            "user_promoted",
            user_id=str(user_id),
            role=ROLE_SUPER_MERCHANT,
            by=str(actor.user_id),
        )
        return user
