"""Audit log service for Autoreply.

Audit rows are the operational record of every pipeline decision
(received, replied, failed, skipped). Entries are append-only; nothing in
this service updates or deletes them.

``AuditService`` is the strict interface used by code that wants errors.
``AuditSink`` wraps it for the webhook pipeline, where an audit failure
must never fail or undo a reply that was already sent.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from autoreply_core.domain.models import AuditLevel, AuditLog

logger = logging.getLogger(__name__)

# Valid values for audit fields
VALID_LEVELS = {AuditLevel.INFO, AuditLevel.WARN, AuditLevel.ERROR}

MAX_MESSAGE_LENGTH = 2000


class AuditService:
    """Service for audit log operations."""

    def __init__(self, db: DBSession):
        """Initialize the audit service.

        Args:
            db: SQLAlchemy database session.
        """
        self.db = db

    def create_entry(
        self,
        level: str,
        message: str,
        tenant_id: Optional[int] = None,
        meta: Optional[dict] = None,
    ) -> AuditLog:
        """Create a new audit log entry.

        Args:
            level: Severity (info, warn, error).
            message: Human-readable description of the decision.
            tenant_id: Owning tenant, when already resolved.
            meta: JSON-serializable context (external ids, error text).

        Returns:
            The created AuditLog entry.

        Raises:
            ValueError: If level is invalid or message is empty.
        """
        if level not in VALID_LEVELS:
            raise ValueError(f"level must be one of {VALID_LEVELS}, got '{level}'")
        if not message:
            raise ValueError("message cannot be empty")

        entry = AuditLog(
            created_at=datetime.now(timezone.utc),
            level=level,
            message=message[:MAX_MESSAGE_LENGTH],
            tenant_id=tenant_id,
            meta=meta or {},
        )

        self.db.add(entry)
        self.db.flush()

        return entry

    def recent_entries(
        self,
        tenant_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[AuditLog]:
        """List the newest entries first, optionally for one tenant."""
        query = select(AuditLog)
        if tenant_id is not None:
            query = query.where(AuditLog.tenant_id == tenant_id)
        query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
        return list(self.db.scalars(query))


class AuditSink:
    """Best-effort audit writer for the webhook pipeline.

    Each row is written inside a SAVEPOINT so a failed insert only rolls
    back itself. A failed write is retried once, then dropped and logged.
    ``record`` never raises.
    """

    ATTEMPTS = 2

    def __init__(self, db: DBSession):
        self.db = db
        self.service = AuditService(db)
        self.dropped = 0

    def record(
        self,
        level: str,
        message: str,
        tenant_id: Optional[int] = None,
        meta: Optional[dict] = None,
    ) -> Optional[AuditLog]:
        """Append an audit row, returning it or None when dropped."""
        if level not in VALID_LEVELS:
            logger.error("Invalid audit level, recording as error", extra={"audit_level": level})
            level = AuditLevel.ERROR

        last_error: Optional[Exception] = None
        for attempt in range(1, self.ATTEMPTS + 1):
            try:
                with self.db.begin_nested():
                    return self.service.create_entry(
                        level, message, tenant_id=tenant_id, meta=meta
                    )
            except (SQLAlchemyError, ValueError, TypeError) as e:
                last_error = e
                logger.warning(
                    "Audit write failed",
                    extra={"attempt": attempt, "error": str(e)},
                )

        self.dropped += 1
        logger.error(
            "Audit entry dropped",
            extra={
                "audit_level": level,
                "audit_message": message,
                "tenant_id": tenant_id,
                "error": str(last_error),
            },
        )
        return None

    def info(self, message: str, tenant_id: Optional[int] = None, meta: Optional[dict] = None):
        return self.record(AuditLevel.INFO, message, tenant_id=tenant_id, meta=meta)

    def warn(self, message: str, tenant_id: Optional[int] = None, meta: Optional[dict] = None):
        return self.record(AuditLevel.WARN, message, tenant_id=tenant_id, meta=meta)

    def error(self, message: str, tenant_id: Optional[int] = None, meta: Optional[dict] = None):
        return self.record(AuditLevel.ERROR, message, tenant_id=tenant_id, meta=meta)
