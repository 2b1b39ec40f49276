"""Service Container - wires orchestration services once per process.

Routes and the outbox worker obtain every service from the container, so
all of them share a single repository, lock backend and provider client.

Usage:
    container = get_container()
    room = await container.provisioner.ensure_room(session_id)
"""

from __future__ import annotations

from coachflow.access.tokens import TokenIssuer
from coachflow.booking.bridge import BookingBridge
from coachflow.config.settings import Settings, get_settings
from coachflow.locking.advisory import (
    AdvisoryLock,
    InMemoryLockBackend,
    LockBackend,
    RedisLockBackend,
)
from coachflow.observability.logging import get_logger
from coachflow.orchestrator.capacity import CapacityGate
from coachflow.orchestrator.models import Session, SessionState, TransitionRecord
from coachflow.orchestrator.repository import InMemorySessionRepository, SessionRepository
from coachflow.orchestrator.state_machine import SessionStateMachine
from coachflow.outbox import ANALYZE_SESSION_OUTCOME, OutboxQueue
from coachflow.recording.insights import ExtractiveInsightGenerator, InsightGenerator
from coachflow.recording.pipeline import RecordingPipeline
from coachflow.video.daily import DailyProvider
from coachflow.video.fallback import FallbackProvider
from coachflow.video.provisioner import VideoRoomProvisioner

logger = get_logger(__name__)


class ServiceContainer:
    """Holds the process-wide orchestration services."""

    def __init__(
        self,
        settings: Settings,
        repository: SessionRepository | None = None,
        lock_backend: LockBackend | None = None,
        daily: DailyProvider | None = None,
        insights: InsightGenerator | None = None,
    ) -> None:
        self.settings = settings
        self.repository = repository or InMemorySessionRepository()

        if lock_backend is None:
            lock_backend = (
                RedisLockBackend.from_url(settings.redis_url)
                if settings.redis_enabled
                else InMemoryLockBackend()
            )
        self.locks = AdvisoryLock(lock_backend, default_lease_s=settings.advisory_lock_ttl_s)

        self.daily = daily or DailyProvider(
            api_key=settings.daily_api_key,
            base_url=settings.daily_api_url,
            timeout_s=settings.video_provider_timeout_s,
        )
        self.fallback = FallbackProvider(settings.fallback_video_host)

        self.capacity = CapacityGate(
            self.repository,
            max_sessions=settings.max_sessions_limit,
            max_db_connections=settings.max_db_connections,
            db_connections_per_session=settings.db_connections_per_session,
        )
        self.state_machine = SessionStateMachine(
            self.repository,
            self.locks,
            self.capacity,
            lock_ttl_s=settings.session_lock_ttl_s,
        )
        self.outbox = OutboxQueue(
            self.repository,
            max_attempts=settings.outbox_max_attempts,
            retention_days=settings.outbox_retention_days,
        )
        self.provisioner = VideoRoomProvisioner(
            self.repository,
            self.locks,
            self.state_machine,
            self.capacity,
            primary=self.daily,
            fallback=self.fallback,
            room_lifetime_s=settings.room_lifetime_s,
        )
        self.issuer = TokenIssuer(
            self.repository,
            self.locks,
            self.daily,
            meeting_token_lifetime_s=settings.meeting_token_lifetime_s,
            join_token_lifetime_s=settings.join_token_lifetime_s,
        )
        self.recordings = RecordingPipeline(
            self.repository,
            self.state_machine,
            self.outbox,
            insights or ExtractiveInsightGenerator(),
            download_timeout_s=settings.video_provider_timeout_s,
        )
        self.booking = BookingBridge(
            self.repository,
            self.capacity,
            self.state_machine,
            self.provisioner,
            self.issuer,
            self.outbox,
            website_url=settings.website_url,
        )

        self.state_machine.on_enter(SessionState.COMPLETED, self._queue_outcome_analysis)

    async def _queue_outcome_analysis(self, session: Session, record: TransitionRecord) -> None:
        await self.outbox.enqueue(
            ANALYZE_SESSION_OUTCOME,
            f"outcome:{session.id}",
            {
                "sessionId": session.id,
                "coachId": session.coach_id,
                "clientId": session.client_id,
                "previousState": record.old_state.value,
                "reason": record.reason,
            },
        )

    async def cleanup_session(self, session_id: str, lock_holder_id: str | None = None) -> Session:
        """Reclaim stale locks, complete the session and refresh capacity."""
        await self.state_machine.cleanup_expired_locks()
        session = await self.state_machine.apply_transition(
            session_id,
            SessionState.COMPLETED,
            lock_holder_id=lock_holder_id,
            reason="cleanup",
        )
        await self.capacity.recompute_capacity()
        return session

    async def close(self) -> None:
        await self.recordings.close()
        await self.daily.close()
        await self.locks.backend.close()
        logger.info("container_closed")


# Global container (initialized on first use)
_container: ServiceContainer | None = None


def get_container() -> ServiceContainer:
    """Get global service container."""
    global _container
    if _container is None:
        _container = ServiceContainer(get_settings())
    return _container


def set_container(container: ServiceContainer | None) -> None:
    """Replace the global container (tests, alternate wiring)."""
    global _container
    _container = container
