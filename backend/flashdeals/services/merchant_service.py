"""Merchant service: business records owned by merchant-role users."""

import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.core.capabilities import DEALS_MANAGE_ANY, MERCHANTS_MANAGE, has_capability, require_capability
from flashdeals.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from flashdeals.models.merchant import Merchant
from flashdeals.services.auth_service import Identity

logger = structlog.get_logger(__name__)

_UPDATABLE_FIELDS = {
    "name",
    "description",
    "category",
    "latitude",
    "longitude",
    "address",
    "phone",
    "image_url",
}


def _validate_coordinates(data: Dict[str, Any], required: bool) -> None:
    for field, bound in (("latitude", 90), ("longitude", 180)):
        value = data.get(field)
        if value is None and not required:
            continue
        if value is None or not -bound <= value <= bound:
            raise ValidationError(f"{field} must be within +/-{bound}", field=field)


class MerchantService:
    """Create, look up, edit and deactivate merchants."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="merchant_service")

    async def get_merchant(self, merchant_id: uuid.UUID) -> Optional[Merchant]:
        result = await self.db.execute(select(Merchant).where(Merchant.id == merchant_id))
        return result.scalar_one_or_none()

    async def get_owned_merchant(self, identity: Identity, merchant_id: uuid.UUID) -> Merchant:
        """Load a merchant the caller may manage.

        Raises:
            NotFoundError: merchant_id is unknown
            AuthorizationError: caller neither owns it nor is a super merchant
        """
        merchant = await self.get_merchant(merchant_id)
        if not merchant:
            raise NotFoundError("Merchant", merchant_id)
        if merchant.owner_id != identity.user_id and not has_capability(identity.role, DEALS_MANAGE_ANY):
            raise AuthorizationError("You do not own this merchant")
        return merchant

    async def list_merchants(self) -> List[Merchant]:
        """All active merchants, alphabetical."""
        result = await self.db.execute(
            select(Merchant).where(Merchant.is_active == True).order_by(Merchant.name)
        )
        return list(result.scalars().all())

    async def list_merchants_for_owner(self, owner_id: uuid.UUID) -> List[Merchant]:
        result = await self.db.execute(
            select(Merchant)
            .where(Merchant.owner_id == owner_id)
            .order_by(Merchant.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_merchant(self, identity: Identity, data: Dict[str, Any]) -> Merchant:
        """Create a merchant owned by the caller. Requires a merchant role."""
        require_capability(identity.role, MERCHANTS_MANAGE)

        for field in ("name", "category", "address"):
            if not (data.get(field) or "").strip():
                raise ValidationError(f"{field} is required", field=field)
        _validate_coordinates(data, required=True)

        merchant = Merchant(
            owner_id=identity.user_id,
            **{k: v for k, v in data.items() if k in _UPDATABLE_FIELDS},
        )
        self.db.add(merchant)
        await self.db.flush()

        self.logger.info(
            "merchant_created",
            merchant_id=str(merchant.id),
            owner_id=str(identity.user_id),
        )
        return merchant

    async def update_merchant(
        self, identity: Identity, merchant_id: uuid.UUID, changes: Dict[str, Any]
    ) -> Merchant:
        merchant = await self.get_owned_merchant(identity, merchant_id)
        _validate_coordinates(changes, required=False)

        for key, value in changes.items():
            if key in _UPDATABLE_FIELDS and value is not None:
                setattr(merchant, key, value)
        await self.db.flush()

        self.logger.info("merchant_updated", merchant_id=str(merchant_id), fields=sorted(changes))
        return merchant

    async def deactivate_merchant(self, identity: Identity, merchant_id: uuid.UUID) -> Merchant:
        """Soft-delete: the row stays, its deals drop out of public listings."""
        merchant = await self.get_owned_merchant(identity, merchant_id)
        merchant.is_active = False
        await self.db.flush()

        self.logger.info("merchant_deactivated", merchant_id=str(merchant_id))
        return merchant
