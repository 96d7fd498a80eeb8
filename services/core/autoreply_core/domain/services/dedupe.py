"""Duplicate webhook delivery guard.

Platforms deliver webhooks at least once. When enabled, the first sighting
of ``(platform, external_event_id)`` is recorded and later sightings inside
the TTL window are reported as duplicates so no second reply is sent.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from autoreply_core.domain.models import ProcessedWebhookEvent

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    # Column is naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DeliveryDeduplicator:
    """Record external event ids and detect repeats within a TTL."""

    def __init__(self, db: DBSession, ttl_seconds: int):
        self.db = db
        self.ttl = timedelta(seconds=ttl_seconds)
        self._purged = False

    def purge_expired(self) -> int:
        """Delete rows older than the TTL. Returns the number removed."""
        cutoff = _utcnow() - self.ttl
        with self.db.begin_nested():
            result = self.db.execute(
                delete(ProcessedWebhookEvent).where(
                    ProcessedWebhookEvent.first_seen_at < cutoff
                )
            )
        return result.rowcount or 0

    def is_duplicate(self, platform: str, external_event_id: str) -> bool:
        """Record a sighting and report whether it was seen recently.

        Events without an id are never treated as duplicates.
        """
        if not external_event_id:
            return False

        if not self._purged:
            self._purged = True
            removed = self.purge_expired()
            if removed:
                logger.debug("Purged processed webhook events", extra={"removed": removed})

        now = _utcnow()
        existing = self.db.scalars(
            select(ProcessedWebhookEvent).where(
                ProcessedWebhookEvent.platform == platform,
                ProcessedWebhookEvent.external_event_id == external_event_id,
            )
        ).first()

        if existing is not None:
            if now - existing.first_seen_at < self.ttl:
                logger.info(
                    "Duplicate webhook event skipped",
                    extra={"platform": platform, "event_id": external_event_id},
                )
                return True
            existing.first_seen_at = now
            self.db.flush()
            return False

        try:
            with self.db.begin_nested():
                self.db.add(
                    ProcessedWebhookEvent(
                        platform=platform,
                        external_event_id=external_event_id,
                        first_seen_at=now,
                    )
                )
        except IntegrityError:
            # Concurrent delivery inserted the same id first
            logger.info(
                "Duplicate webhook event skipped",
                extra={"platform": platform, "event_id": external_event_id},
            )
            return True
        return False
