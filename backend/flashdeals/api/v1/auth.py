"""Authentication API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.core.capabilities import USERS_PROMOTE
from flashdeals.core.exceptions import AuthenticationError
from flashdeals.dependencies import get_current_user, get_db, require
from flashdeals.models.user import User
from flashdeals.schemas.auth import (
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from flashdeals.schemas.common import ApiResponse
from flashdeals.services.auth_service import AuthService, Identity, create_access_token

router = APIRouter()


def _session_payload(user: User) -> dict:
    token = create_access_token(user.id, user.role)
    return {
        "user": UserResponse.model_validate(user).model_dump(mode="json"),
        "token": TokenResponse(access_token=token).model_dump(),
    }


@router.post("/register", response_model=ApiResponse, status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Register a new customer or merchant account."""
    service = AuthService(db)
    user = await service.register(
        email=body.email,
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
    )
    await db.refresh(user)
    return ApiResponse(status="success", data=_session_payload(user))


@router.post("/login", response_model=ApiResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password."""
    service = AuthService(db)
    user = await service.authenticate(email=body.email, password=body.password)

    if not user:
        raise AuthenticationError("Incorrect email or password")

    return ApiResponse(status="success", data=_session_payload(user))


@router.get("/me", response_model=ApiResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current authenticated user info."""
    return ApiResponse(
        status="success",
        data=UserResponse.model_validate(current_user).model_dump(mode="json"),
    )


@router.post("/me/become-merchant", response_model=ApiResponse)
async def become_merchant(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Self-service upgrade from customer to merchant. Returns a fresh token."""
    user = await AuthService(db).promote_to_merchant(current_user.id)
    return ApiResponse(status="success", data=_session_payload(user))


@router.post("/users/{user_id}/promote-super", response_model=ApiResponse)
async def promote_super_merchant(
    user_id: UUID,
    identity: Identity = Depends(require(USERS_PROMOTE)),
    db: AsyncSession = Depends(get_db),
):
    """Grant super merchant access to another user."""
    user = await AuthService(db).promote_to_super_merchant(identity, user_id)
    return ApiResponse(
        status="success",
        data=UserResponse.model_validate(user).model_dump(mode="json"),
    )
