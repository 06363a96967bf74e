"""Audit log and activity statistics endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.core.capabilities import AUDIT_READ
from flashdeals.dependencies import get_db, require
from flashdeals.schemas import ApiResponse, AuditLogResponse, AuditStatsResponse, ListMeta
from flashdeals.services.audit_service import AuditService
from flashdeals.services.auth_service import Identity

router = APIRouter()


@router.get("/logs", response_model=ApiResponse)
async def list_audit_logs(
    limit: Optional[int] = Query(None, ge=1, le=500),
    identity: Identity = Depends(require(AUDIT_READ)),
    db: AsyncSession = Depends(get_db),
):
    """Most recent audit entries first."""
    logs = await AuditService(db).get_logs(limit)
    return ApiResponse(
        status="success",
        data=[AuditLogResponse.model_validate(entry) for entry in logs],
        meta=ListMeta(total=len(logs)),
    )


@router.get("/stats", response_model=ApiResponse)
async def audit_stats(
    identity: Identity = Depends(require(AUDIT_READ)),
    db: AsyncSession = Depends(get_db),
):
    stats = await AuditService(db).get_stats()
    return ApiResponse(status="success", data=AuditStatsResponse(**stats))
