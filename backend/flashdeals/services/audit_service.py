"""Audit log service: append-only action ledger and activity statistics.

Two write paths exist:

- ``AuditService.record`` inserts into the caller's session and takes part
  in the caller's transaction.
- ``AuditSink`` is the fire-and-forget path used for lifecycle events. It
  writes on its own session, retries transient database errors a couple of
  times, then logs and drops the event. It never raises, so a failing audit
  write cannot roll back the operation that triggered it. Callers on the
  request path use ``dispatch``, which runs ``emit`` as a tracked
  background task so the response never waits on the retries.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import structlog
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from flashdeals.config import settings
from flashdeals.models.audit_log import AuditLog, AUDIT_ERROR, AUDIT_SUCCESS
from flashdeals.models.notification import Notification
from flashdeals.models.user import User

logger = structlog.get_logger(__name__)


class AuditService:
    """Reads and writes audit log rows within a request session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="audit_service")

    async def record(
        self,
        action: str,
        user_id: Optional[uuid.UUID] = None,
        details: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        status: str = AUDIT_SUCCESS,
    ) -> AuditLog:
        """Append one audit row. Flushes but does not commit."""
        entry = AuditLog(
            user_id=user_id,
            action=action,
            details=details,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500],
            status=status,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def get_logs(self, limit: Optional[int] = None) -> List[AuditLog]:
        """Most recent audit rows first."""
        limit = limit or settings.AUDIT_LOG_DEFAULT_LIMIT
        result = await self.db.execute(
            select(AuditLog).order_by(AuditLog.timestamp.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def get_stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Return total users, actions since midnight UTC and error count."""
        now = now or datetime.now(timezone.utc)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

        total_users = (await self.db.execute(select(func.count(User.id)))).scalar() or 0
        actions_today = (
            await self.db.execute(
                select(func.count(AuditLog.id)).where(AuditLog.timestamp >= start_of_day)
            )
        ).scalar() or 0
        errors = (
            await self.db.execute(
                select(func.count(AuditLog.id)).where(AuditLog.status == AUDIT_ERROR)
            )
        ).scalar() or 0

        return {
            "total_users": total_users,
            "actions_today": actions_today,
            "errors": errors,
        }


class AuditSink:
    """Best-effort writer for lifecycle events (audit rows and notifications).

    Args:
        session_factory: Factory producing sessions independent of the
            request session.
        attempts: Total write attempts before the event is dropped.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        attempts: int = 3,
    ):
        self.session_factory = session_factory
        self.attempts = attempts
        self._pending: Set[asyncio.Task] = set()
        self.logger = logger.bind(service="audit_sink")

    def dispatch(self, action: str, **kwargs) -> Optional[asyncio.Task]:
        """Schedule ``emit`` in the background and return immediately.

        The task is held until it finishes; ``drain`` waits for all of them.
        """
        task = asyncio.get_running_loop().create_task(self.emit(action, **kwargs))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched event to be written or dropped."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def emit(
        self,
        action: str,
        user_id: Optional[uuid.UUID] = None,
        details: Optional[str] = None,
        status: str = AUDIT_SUCCESS,
        notification: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """Write an audit row and, optionally, a notification for ``user_id``.

        Returns True when the write landed, False when it was dropped.
        """

        async def _write(db: AsyncSession) -> None:
            db.add(AuditLog(
                user_id=user_id,
                action=action,
                details=details,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:500] or None,
                status=status,
            ))
            if notification and user_id is not None:
                db.add(Notification(user_id=user_id, **notification))

        return await self._run(action, _write)

    async def _run(self, action: str, write: Callable[[AsyncSession], Any]) -> bool:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
                retry=retry_if_exception_type(SQLAlchemyError),
                reraise=False,
            ):
                with attempt:
                    async with self.session_factory() as db:
                        await write(db)
                        await db.commit()
        except RetryError as e:
            self.logger.warning(
                "audit_event_dropped",
                action=action,
                error=str(e.last_attempt.exception()),
            )
            return False
        except Exception as e:
            self.logger.error(
                "audit_event_failed",
                action=action,
                error=str(e),
                exc_info=True,
            )
            return False

        self.logger.debug("audit_event_written", action=action)
        return True


class NullAuditSink(AuditSink):
    """Sink that drops every event; used where no side channel is wanted."""

    def __init__(self):
        self._pending = set()
        self.logger = logger.bind(service="audit_sink")

    def dispatch(self, action: str, **kwargs) -> Optional[asyncio.Task]:
        self.logger.debug("audit_event_skipped", action=action)
        return None

    async def emit(self, action: str, **kwargs) -> bool:
        self.logger.debug("audit_event_skipped", action=action)
        return False
