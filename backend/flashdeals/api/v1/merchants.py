"""Merchant API endpoints, including the merchant-side deal views."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.core.capabilities import DEALS_MANAGE, MERCHANTS_MANAGE
from flashdeals.core.exceptions import NotFoundError
from flashdeals.dependencies import get_db, get_deal_service, require
from flashdeals.schemas import (
    ApiResponse,
    DealCreateRequest,
    DealResponse,
    ListMeta,
    MerchantCreateRequest,
    MerchantResponse,
    MerchantUpdateRequest,
)
from flashdeals.services.auth_service import Identity
from flashdeals.services.cache_service import CacheService, get_cache, invalidate_deals_cache
from flashdeals.services.deal_service import DealService
from flashdeals.services.merchant_service import MerchantService

router = APIRouter()


@router.get("", response_model=ApiResponse)
async def list_merchants(db: AsyncSession = Depends(get_db)):
    merchants = await MerchantService(db).list_merchants()
    return ApiResponse(
        status="success",
        data=[MerchantResponse.model_validate(m) for m in merchants],
        meta=ListMeta(total=len(merchants)),
    )


@router.post("", response_model=ApiResponse, status_code=201)
async def create_merchant(
    body: MerchantCreateRequest,
    identity: Identity = Depends(require(MERCHANTS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    merchant = await MerchantService(db).create_merchant(identity, body.model_dump())
    await db.refresh(merchant)
    return ApiResponse(status="success", data=MerchantResponse.model_validate(merchant))


@router.get("/{merchant_id}", response_model=ApiResponse)
async def get_merchant(merchant_id: UUID, db: AsyncSession = Depends(get_db)):
    merchant = await MerchantService(db).get_merchant(merchant_id)
    if not merchant:
        raise NotFoundError("Merchant", merchant_id)
    return ApiResponse(status="success", data=MerchantResponse.model_validate(merchant))


@router.patch("/{merchant_id}", response_model=ApiResponse)
async def update_merchant(
    merchant_id: UUID,
    body: MerchantUpdateRequest,
    identity: Identity = Depends(require(MERCHANTS_MANAGE)),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    merchant = await MerchantService(db).update_merchant(
        identity, merchant_id, body.model_dump(exclude_unset=True)
    )
    await db.refresh(merchant)
    await invalidate_deals_cache(cache)
    return ApiResponse(status="success", data=MerchantResponse.model_validate(merchant))


@router.delete("/{merchant_id}", response_model=ApiResponse)
async def deactivate_merchant(
    merchant_id: UUID,
    identity: Identity = Depends(require(MERCHANTS_MANAGE)),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    """Soft-delete; the merchant's deals drop out of public listings."""
    merchant = await MerchantService(db).deactivate_merchant(identity, merchant_id)
    await db.commit()
    await invalidate_deals_cache(cache)
    return ApiResponse(status="success", data=MerchantResponse.model_validate(merchant))


@router.post("/{merchant_id}/deals", response_model=ApiResponse, status_code=201)
async def create_deal(
    merchant_id: UUID,
    body: DealCreateRequest,
    identity: Identity = Depends(require(DEALS_MANAGE)),
    service: DealService = Depends(get_deal_service),
    cache: CacheService = Depends(get_cache),
):
    """Publish a deal for a merchant the caller owns."""
    deal = await service.create_deal(identity, merchant_id, **body.model_dump())
    await invalidate_deals_cache(cache)
    deal = await service.get_deal(deal.id)
    return ApiResponse(status="success", data=DealResponse.from_deal(deal))


@router.get("/{merchant_id}/deals", response_model=ApiResponse)
async def list_merchant_deals(
    merchant_id: UUID,
    identity: Identity = Depends(require(DEALS_MANAGE)),
    service: DealService = Depends(get_deal_service),
):
    """Every deal of an owned merchant, whatever its state."""
    await service.merchants.get_owned_merchant(identity, merchant_id)
    deals = await service.get_deals_for_merchant(merchant_id)
    return ApiResponse(
        status="success",
        data=[DealResponse.from_deal(d) for d in deals],
        meta=ListMeta(total=len(deals)),
    )


@router.get("/{merchant_id}/deals/expired", response_model=ApiResponse)
async def list_expired_merchant_deals(
    merchant_id: UUID,
    identity: Identity = Depends(require(DEALS_MANAGE)),
    service: DealService = Depends(get_deal_service),
):
    await service.merchants.get_owned_merchant(identity, merchant_id)
    deals = await service.get_expired_deals_for_merchant(merchant_id)
    return ApiResponse(
        status="success",
        data=[DealResponse.from_deal(d) for d in deals],
        meta=ListMeta(total=len(deals)),
    )
