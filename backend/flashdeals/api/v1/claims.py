"""Claim redemption endpoint used at the merchant's point of sale."""

from uuid import UUID

from fastapi import APIRouter, Depends

from flashdeals.core.capabilities import DEALS_MANAGE
from flashdeals.dependencies import get_deal_service, require
from flashdeals.schemas import ApiResponse, ClaimResponse
from flashdeals.services.auth_service import Identity
from flashdeals.services.deal_service import DealService

router = APIRouter()


@router.post("/{claim_id}/redeem", response_model=ApiResponse)
async def redeem_claim(
    claim_id: UUID,
    identity: Identity = Depends(require(DEALS_MANAGE)),
    service: DealService = Depends(get_deal_service),
):
    """Mark a claim as used. Only the deal's merchant may do this."""
    claim = await service.redeem_claim(identity, claim_id)
    return ApiResponse(status="success", data=ClaimResponse.model_validate(claim))
