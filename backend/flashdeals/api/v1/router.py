"""API v1 router -- aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from flashdeals.api.v1 import audit, auth, claims, deals, health, me, merchants, notifications

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["health"])
api_v1_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_v1_router.include_router(deals.router, prefix="/deals", tags=["deals"])
api_v1_router.include_router(merchants.router, prefix="/merchants", tags=["merchants"])
api_v1_router.include_router(claims.router, prefix="/claims", tags=["claims"])
api_v1_router.include_router(me.router, prefix="/me", tags=["me"])
api_v1_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_v1_router.include_router(audit.router, prefix="/audit", tags=["audit"])
