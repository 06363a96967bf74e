"""AuditLog model: append-only ledger of user and system actions."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from flashdeals.models.base import Base, UTCDateTime, UUIDPrimaryKeyMixin, utcnow

AUDIT_SUCCESS = "success"
AUDIT_ERROR = "error"


class AuditLog(UUIDPrimaryKeyMixin, Base):
    """One recorded action. Rows are inserted and never updated or deleted."""

    __tablename__ = "audit_logs"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
        comment="Null for anonymous requests"
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=AUDIT_SUCCESS,
        comment="'success' or 'error'"
    )
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index("idx_audit_logs_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', status={self.status}, user={self.user_id})>"
