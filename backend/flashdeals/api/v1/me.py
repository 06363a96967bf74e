"""Endpoints scoped to the authenticated user."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.dependencies import get_db, get_deal_service, get_identity
from flashdeals.schemas import (
    ApiResponse,
    ClaimedDealResponse,
    DealResponse,
    ListMeta,
    MerchantResponse,
    SavedDealResponse,
)
from flashdeals.services.auth_service import Identity
from flashdeals.services.deal_service import DealService
from flashdeals.services.merchant_service import MerchantService

router = APIRouter()


@router.get("/saved-deals", response_model=ApiResponse)
async def my_saved_deals(
    identity: Identity = Depends(get_identity),
    service: DealService = Depends(get_deal_service),
):
    """Saved deals that are still active."""
    saved = await service.get_saved_deals(identity.user_id)
    data = [
        SavedDealResponse(
            id=s.id,
            deal_id=s.deal_id,
            saved_at=s.saved_at,
            deal=DealResponse.from_deal(s.deal),
        )
        for s in saved
    ]
    return ApiResponse(status="success", data=data, meta=ListMeta(total=len(data)))


@router.get("/claimed-deals", response_model=ApiResponse)
async def my_claimed_deals(
    identity: Identity = Depends(get_identity),
    service: DealService = Depends(get_deal_service),
):
    """Every claim of the caller, newest first, with its deal."""
    claims = await service.get_claimed_deals(identity.user_id)
    data = [
        ClaimedDealResponse(
            id=c.id,
            user_id=c.user_id,
            deal_id=c.deal_id,
            status=c.status,
            claimed_at=c.claimed_at,
            used_at=c.used_at,
            deal=DealResponse.from_deal(c.deal),
        )
        for c in claims
    ]
    return ApiResponse(status="success", data=data, meta=ListMeta(total=len(data)))


@router.get("/merchants", response_model=ApiResponse)
async def my_merchants(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    merchants = await MerchantService(db).list_merchants_for_owner(identity.user_id)
    return ApiResponse(
        status="success",
        data=[MerchantResponse.model_validate(m) for m in merchants],
        meta=ListMeta(total=len(merchants)),
    )
