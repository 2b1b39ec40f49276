"""Capacity Gate - advisory admission control.

Reads the SystemCapacity aggregate and says whether a new session or room
may be admitted. The check does not reserve a slot: two concurrent callers
can both be admitted just under the limit. Exact admission is left to the
per-session lock plus provider-side errors.

The aggregate is never incremented or decremented. ``recompute_capacity``
rebuilds it from the session table after any transition that changes
active-session membership.
"""

import math
from dataclasses import dataclass

from coachflow.exceptions import CapacityExceededError
from coachflow.observability.logging import get_logger
from coachflow.observability.metrics import record_capacity_rejection, update_capacity
from coachflow.orchestrator.models import ACTIVE_STATES, SystemCapacity, utcnow
from coachflow.orchestrator.repository import SessionRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class CapacityCheck:
    """Point-in-time admission decision."""

    can_admit: bool
    active_count: int
    max_count: int
    db_used: int
    max_db: int

    def to_dict(self) -> dict:
        return {
            "canAdmit": self.can_admit,
            "activeCount": self.active_count,
            "maxCount": self.max_count,
            "dbUsed": self.db_used,
            "maxDb": self.max_db,
        }


class CapacityGate:
    """Admission control over the shared capacity aggregate.

    Usage:
        gate = CapacityGate(repo, max_sessions=100, max_db_connections=60)
        check = await gate.check_capacity()
        if not check.can_admit:
            ...
        await gate.recompute_capacity()
    """

    def __init__(
        self,
        repository: SessionRepository,
        max_sessions: int,
        max_db_connections: int,
        db_connections_per_session: float = 0.5,
    ) -> None:
        self._repo = repository
        self._max_sessions = max_sessions
        self._max_db = max_db_connections
        self._db_per_session = db_connections_per_session

    async def check_capacity(self) -> CapacityCheck:
        """Read the current snapshot and decide admission."""
        snapshot = await self._repo.get_capacity()
        can_admit = (
            snapshot.active_sessions_count < snapshot.max_sessions_limit
            and snapshot.db_connections_used < snapshot.max_db_connections
        )
        return CapacityCheck(
            can_admit=can_admit,
            active_count=snapshot.active_sessions_count,
            max_count=snapshot.max_sessions_limit,
            db_used=snapshot.db_connections_used,
            max_db=snapshot.max_db_connections,
        )

    async def ensure_capacity(self, source: str) -> CapacityCheck:
        """Check capacity and raise when the system is full.

        Raises:
            CapacityExceededError: If no slot is available
        """
        check = await self.check_capacity()
        if not check.can_admit:
            record_capacity_rejection(source)
            logger.warning(
                "capacity_rejected",
                source=source,
                active_count=check.active_count,
                max_count=check.max_count,
                db_used=check.db_used,
                max_db=check.max_db,
            )
            raise CapacityExceededError(check.active_count, check.max_count)
        return check

    async def recompute_capacity(self) -> SystemCapacity:
        """Rebuild the aggregate from the authoritative session table."""
        active = await self._repo.count_sessions(ACTIVE_STATES)
        capacity = SystemCapacity(
            active_sessions_count=active,
            max_sessions_limit=self._max_sessions,
            db_connections_used=math.ceil(active * self._db_per_session),
            max_db_connections=self._max_db,
            updated_at=utcnow(),
        )
        await self._repo.save_capacity(capacity)
        update_capacity(capacity.active_sessions_count, capacity.db_connections_used)
        logger.debug(
            "capacity_recomputed",
            active_sessions=capacity.active_sessions_count,
            db_connections_used=capacity.db_connections_used,
        )
        return capacity
