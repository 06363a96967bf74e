"""FlashDeals Backend -- FastAPI Application Entry Point."""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flashdeals.api.v1.router import api_v1_router
from flashdeals.config import settings
from flashdeals.core.exceptions import AuthenticationError, FlashDealsException
from flashdeals.db.session import async_session_factory, engine
from flashdeals.dependencies import get_audit_sink
from flashdeals.models import Base
from flashdeals.models.audit_log import AUDIT_ERROR, AUDIT_SUCCESS
from flashdeals.scheduler import RecurrenceScheduler
from flashdeals.schemas.common import ErrorDetail, ErrorResponse
from flashdeals.services.auth_service import decode_access_token
from flashdeals.services.cache_service import get_cache_service

logging.basicConfig(
    level=logging.INFO if settings.DEBUG else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)
audit_logger = structlog.get_logger(__name__).bind(service="audit_middleware")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    logger.info("Starting FlashDeals API server...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables verified/created")

        if settings.SEED_DEMO_DATA:
            from flashdeals.db.seed import seed_demo_data

            async with async_session_factory() as session:
                created = await seed_demo_data(session)
            logger.info(f"Seeded {created} demo deals")
    except Exception as e:
        logger.error(f"Database init failed: {e}", exc_info=True)

    scheduler: Optional[RecurrenceScheduler] = None
    if settings.ENVIRONMENT != "test":
        scheduler = RecurrenceScheduler(async_session_factory)
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info(f"Recurrence sweep every {scheduler.interval_minutes} minutes")
    else:
        logger.info("Scheduler disabled (test environment)")

    cache = get_cache_service()
    if cache.enabled:
        if await cache.health_check():
            logger.info("Redis cache connected successfully")
        else:
            logger.warning("Redis cache connection failed (will operate without caching)")

    yield

    logger.info("Shutting down FlashDeals API server...")

    if scheduler:
        scheduler.stop()

    await app.state.audit_sink.drain()

    try:
        await cache.close()
        logger.info("Redis cache connection closed")
    except Exception as e:
        logger.warning(f"Error closing cache: {e}")


app = FastAPI(
    title="FlashDeals API",
    description="Time-boxed, capacity-limited local merchant deals",
    version="0.1.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

app.state.audit_sink = get_audit_sink()
app.state.scheduler = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FlashDealsException)
async def flashdeals_exception_handler(request: Request, exc: FlashDealsException):
    """Render domain errors as the standard error envelope."""
    error = ErrorDetail(
        code=exc.code,
        message=exc.message,
        field=exc.field,
        reason=getattr(exc, "reason", None),
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=error).model_dump(),
        headers=headers,
    )


def _request_user_id(request: Request) -> Optional[uuid.UUID]:
    auth = request.headers.get("authorization", "")
    if not auth.lower().startswith("bearer "):
        return None
    sub = decode_access_token(auth[7:])
    try:
        return uuid.UUID(sub) if sub else None
    except ValueError:
        return None


def route_template(path: str, path_params: dict) -> str:
    """Collapse a concrete request path back to its route template.

    >>> route_template("/api/v1/deals/42/claim", {"deal_id": "42"})
    '/api/v1/deals/{deal_id}/claim'
    """
    names = {str(value): name for name, value in path_params.items()}
    return "/".join(
        f"{{{names[segment]}}}" if segment in names else segment
        for segment in path.split("/")
    )


@app.middleware("http")
async def audit_requests(request: Request, call_next):
    """Write one audit row per API request, after the response is produced."""
    response = await call_next(request)

    path = request.url.path
    if not path.startswith("/api") or path.endswith("/health") or request.method == "OPTIONS":
        return response

    action = f"{request.method} {route_template(path, request.path_params)}"
    status = AUDIT_ERROR if response.status_code >= 400 else AUDIT_SUCCESS

    request.app.state.audit_sink.dispatch(
        action,
        user_id=_request_user_id(request),
        details=json.dumps({"path": path, "status_code": response.status_code}),
        status=status,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    if status == AUDIT_ERROR:
        audit_logger.info("request_failed", action=action, status_code=response.status_code)
    return response


app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "FlashDeals API",
        "version": "0.1.0",
        "docs": "/docs" if settings.DEBUG else None,
        "health": "/api/v1/health",
    }
