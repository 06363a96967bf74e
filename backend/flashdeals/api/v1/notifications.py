"""Notification inbox endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from flashdeals.core.capabilities import NOTIFICATIONS_READ
from flashdeals.dependencies import get_db, require
from flashdeals.schemas import (
    ApiResponse,
    ListMeta,
    MarkAllReadResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from flashdeals.services.auth_service import Identity
from flashdeals.services.notification_service import NotificationService

router = APIRouter()


@router.get("", response_model=ApiResponse)
async def list_notifications(
    filter: str = Query("all", description="all, unread or read"),
    identity: Identity = Depends(require(NOTIFICATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    notifications = await NotificationService(db).list_for_user(identity.user_id, filter)
    return ApiResponse(
        status="success",
        data=[NotificationResponse.model_validate(n) for n in notifications],
        meta=ListMeta(total=len(notifications)),
    )


@router.get("/unread-count", response_model=ApiResponse)
async def unread_count(
    identity: Identity = Depends(require(NOTIFICATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    count = await NotificationService(db).unread_count(identity.user_id)
    return ApiResponse(status="success", data=UnreadCountResponse(unread=count))


@router.post("/read-all", response_model=ApiResponse)
async def mark_all_read(
    identity: Identity = Depends(require(NOTIFICATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    updated = await NotificationService(db).mark_all_read(identity.user_id)
    return ApiResponse(status="success", data=MarkAllReadResponse(updated=updated))


@router.post("/{notification_id}/read", response_model=ApiResponse)
async def mark_read(
    notification_id: UUID,
    identity: Identity = Depends(require(NOTIFICATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService(db).mark_read(notification_id, identity.user_id)
    return ApiResponse(status="success", data=NotificationResponse.model_validate(notification))


@router.delete("/{notification_id}", response_model=ApiResponse)
async def delete_notification(
    notification_id: UUID,
    identity: Identity = Depends(require(NOTIFICATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    await NotificationService(db).delete(notification_id, identity.user_id)
    return ApiResponse(status="success", data={"id": str(notification_id), "deleted": True})
