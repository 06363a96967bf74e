"""Deals API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from flashdeals.core.capabilities import (
    DEALS_CLAIM,
    DEALS_MANAGE,
    DEALS_SAVE,
    RECURRENCE_RUN,
)
from flashdeals.core.exceptions import NotFoundError
from flashdeals.dependencies import get_deal_service, require
from flashdeals.schemas import (
    ApiResponse,
    ClaimResponse,
    DealResponse,
    DealUpdateRequest,
    ListMeta,
    RecurrenceRunResponse,
)
from flashdeals.services.auth_service import Identity
from flashdeals.services.cache_service import (
    CacheService,
    cache_key_for_deals,
    get_cache,
    invalidate_deals_cache,
)
from flashdeals.services.deal_service import DealFilter, DealService

router = APIRouter()


def _deal_list_response(deals) -> ApiResponse:
    return ApiResponse(
        status="success",
        data=[DealResponse.from_deal(d) for d in deals],
        meta=ListMeta(total=len(deals)),
    )


@router.get("", response_model=ApiResponse)
async def list_deals(
    category: Optional[str] = Query(None, description="Exact category match, case-insensitive"),
    q: Optional[str] = Query(None, max_length=100, description="Substring of title or description"),
    service: DealService = Depends(get_deal_service),
    cache: CacheService = Depends(get_cache),
):
    """List active deals whose end time has not passed.

    Cached briefly under ``deals:*``; every deal mutation drops the cache.
    """
    cache_key = cache_key_for_deals(category=category, q=q)

    cached = await cache.get(cache_key)
    if cached:
        return ApiResponse.model_validate_json(cached)

    deals = await service.list_active_deals(DealFilter(category=category, q=q))
    response = _deal_list_response(deals)

    await cache.set(cache_key, response.model_dump_json())
    return response


@router.get("/search", response_model=ApiResponse)
async def search_deals(
    q: str = Query(..., min_length=1, max_length=100),
    service: DealService = Depends(get_deal_service),
):
    """Search active deals by title, description, merchant name or category."""
    deals = await service.search_deals(q)
    return _deal_list_response(deals)


@router.get("/nearby", response_model=ApiResponse)
async def deals_nearby(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: Optional[float] = Query(None, gt=0, le=500, description="Radius in miles"),
    service: DealService = Depends(get_deal_service),
):
    """Active deals from merchants within a bounding box around a point."""
    deals = await service.get_deals_by_location(lat, lng, radius)
    return _deal_list_response(deals)


@router.post("/recurrence/run", response_model=ApiResponse)
async def run_recurrence(
    identity: Identity = Depends(require(RECURRENCE_RUN)),
    service: DealService = Depends(get_deal_service),
    cache: CacheService = Depends(get_cache),
):
    """Run one recurrence sweep now instead of waiting for the scheduler."""
    recurred = await service.process_recurrence()
    if recurred:
        await invalidate_deals_cache(cache)
    return ApiResponse(status="success", data=RecurrenceRunResponse(recurred=recurred))


@router.get("/{deal_id}", response_model=ApiResponse)
async def get_deal(
    deal_id: UUID,
    service: DealService = Depends(get_deal_service),
):
    """Get one deal, including expired and inactive ones."""
    deal = await service.get_deal(deal_id)
    if not deal:
        raise NotFoundError("Deal", deal_id)
    return ApiResponse(status="success", data=DealResponse.from_deal(deal))


@router.patch("/{deal_id}", response_model=ApiResponse)
async def update_deal(
    deal_id: UUID,
    body: DealUpdateRequest,
    identity: Identity = Depends(require(DEALS_MANAGE)),
    service: DealService = Depends(get_deal_service),
    cache: CacheService = Depends(get_cache),
):
    """Edit a deal of a merchant the caller manages."""
    deal = await service.update_deal(identity, deal_id, body.model_dump(exclude_unset=True))
    await invalidate_deals_cache(cache)
    return ApiResponse(status="success", data=DealResponse.from_deal(deal))


@router.delete("/{deal_id}", response_model=ApiResponse)
async def deactivate_deal(
    deal_id: UUID,
    identity: Identity = Depends(require(DEALS_MANAGE)),
    service: DealService = Depends(get_deal_service),
    cache: CacheService = Depends(get_cache),
):
    """Deactivate a deal. The row is kept for history."""
    deal = await service.deactivate_deal(identity, deal_id)
    await invalidate_deals_cache(cache)
    return ApiResponse(status="success", data=DealResponse.from_deal(deal))


@router.post("/{deal_id}/claim", response_model=ApiResponse, status_code=201)
async def claim_deal(
    deal_id: UUID,
    identity: Identity = Depends(require(DEALS_CLAIM)),
    service: DealService = Depends(get_deal_service),
    cache: CacheService = Depends(get_cache),
):
    """Claim one unit of a deal for the caller.

    Answers 409 with ``error.reason`` set when the deal is not claimable.
    """
    claim = await service.claim_deal(identity.user_id, deal_id)
    await invalidate_deals_cache(cache)
    return ApiResponse(status="success", data=ClaimResponse.model_validate(claim))


@router.post("/{deal_id}/save", response_model=ApiResponse, status_code=201)
async def save_deal(
    deal_id: UUID,
    identity: Identity = Depends(require(DEALS_SAVE)),
    service: DealService = Depends(get_deal_service),
):
    saved = await service.save_deal(identity.user_id, deal_id)
    return ApiResponse(
        status="success",
        data={"deal_id": str(saved.deal_id), "saved": True},
    )


@router.delete("/{deal_id}/save", response_model=ApiResponse)
async def unsave_deal(
    deal_id: UUID,
    identity: Identity = Depends(require(DEALS_SAVE)),
    service: DealService = Depends(get_deal_service),
):
    """Remove a bookmark; removing one that does not exist is not an error."""
    removed = await service.unsave_deal(identity.user_id, deal_id)
    return ApiResponse(
        status="success",
        data={"deal_id": str(deal_id), "saved": False, "removed": removed},
    )
