"""Outbox - durable pending work for best-effort side calls.

Core operations enqueue emails and analysis requests here instead of
calling out inline; the worker in the API process drains the queue. Enqueue is
deduplicated by key, so replaying an operation never queues the same side
call twice.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from coachflow.observability.logging import get_logger
from coachflow.observability.metrics import record_outbox
from coachflow.orchestrator.models import OutboxItem, OutboxStatus, new_id, utcnow
from coachflow.orchestrator.repository import SessionRepository

logger = get_logger(__name__)

# Outbox item kinds
EMAIL_SESSION_CONFIRMATION = "email.session_confirmation"
EMAIL_COACH_NOTIFICATION = "email.coach_notification"
EMAIL_SESSION_DECLINED = "email.session_declined"
ANALYZE_SESSION_OUTCOME = "analysis.session_outcome"
ANALYZE_USER_BEHAVIOR = "analysis.user_behavior"

OutboxHandler = Callable[[OutboxItem], Awaitable[None]]


@dataclass
class DrainResult:
    sent: int = 0
    failed: int = 0
    purged: int = 0


class OutboxQueue:
    """Deduplicated work queue over the repository outbox table.

    Usage:
        outbox = OutboxQueue(repo)
        await outbox.enqueue(EMAIL_COACH_NOTIFICATION, f"coach-notify:{sid}", {...})
        result = await outbox.drain(deliver)
    """

    def __init__(
        self,
        repository: SessionRepository,
        max_attempts: int = 3,
        retention_days: int = 7,
        batch_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self._max_attempts = max_attempts
        self._retention = timedelta(days=retention_days)
        self._batch_size = batch_size
        self._clock = clock

    async def enqueue(
        self,
        kind: str,
        dedup_key: str,
        payload: dict[str, Any],
        scheduled_for: datetime | None = None,
    ) -> OutboxItem:
        """Queue work unless an item with ``dedup_key`` already exists."""
        existing = await self._repo.find_outbox_item(dedup_key)
        if existing is not None:
            logger.debug("outbox_duplicate", kind=kind, dedup_key=dedup_key)
            return existing

        now = self._clock()
        item = OutboxItem(
            id=new_id(),
            kind=kind,
            dedup_key=dedup_key,
            payload=payload,
            max_attempts=self._max_attempts,
            scheduled_for=scheduled_for or now,
            created_at=now,
        )
        try:
            stored = await self._repo.insert_outbox_item(item)
        except ValueError:
            # Lost an insert race on the dedup key
            return await self._repo.find_outbox_item(dedup_key)

        logger.info("outbox_enqueued", kind=kind, dedup_key=dedup_key, item_id=stored.id)
        return stored

    async def drain(self, handler: OutboxHandler) -> DrainResult:
        """Deliver due items in creation order, then purge old ones."""
        result = DrainResult()
        now = self._clock()

        for item in await self._repo.list_outbox_due(now, self._batch_size):
            item.attempts += 1
            try:
                await handler(item)
            except Exception as exc:
                item.status = OutboxStatus.FAILED
                item.last_error = str(exc)[:500]
                result.failed += 1
                record_outbox(item.kind, "failed")
                logger.warning(
                    "outbox_delivery_failed",
                    kind=item.kind,
                    item_id=item.id,
                    attempts=item.attempts,
                    max_attempts=item.max_attempts,
                    error=str(exc),
                )
            else:
                item.status = OutboxStatus.SENT
                item.last_error = None
                result.sent += 1
                record_outbox(item.kind, "sent")
            await self._repo.save_outbox_item(item)

        result.purged = await self.purge()
        if result.sent or result.failed:
            logger.info("outbox_drained", sent=result.sent, failed=result.failed, purged=result.purged)
        return result

    async def purge(self) -> int:
        """Delete sent and cancelled items past retention."""
        return await self._repo.purge_outbox(
            (OutboxStatus.SENT, OutboxStatus.CANCELLED),
            self._clock() - self._retention,
        )
