"""Session State Machine - canonical lifecycle of a coaching session.

States:
- PENDING_COACH_RESPONSE: Instant-connect request waiting on the coach
- SCHEDULED: Booked, no video room yet
- READY: Video room provisioned
- IN_PROGRESS: Meeting running
- COMPLETED / CANCELLED / DECLINED / NO_SHOW: Terminal

Every transition runs under the advisory lock ``session_state:{id}``. The
session row additionally carries lock metadata (holder, timestamp, reason)
while the transition is applied; metadata older than the lock TTL is
reclaimed by ``cleanup_expired_locks`` so a crashed holder cannot wedge a
session.
"""

from __future__ import annotations

import inspect
import uuid
from datetime import timedelta
from typing import Any, Callable

from coachflow.config.constants import ORCH
from coachflow.exceptions import (
    InvalidTransitionError,
    LockUnavailableError,
    SessionNotFoundError,
    ValidationError,
)
from coachflow.locking.advisory import AdvisoryLock
from coachflow.observability.logging import SessionLogger, SideEffectLogger, get_logger
from coachflow.observability.metrics import record_locks_reclaimed, record_transition
from coachflow.orchestrator.capacity import CapacityGate
from coachflow.orchestrator.models import (
    ACTIVE_STATES,
    Session,
    SessionState,
    TransitionRecord,
    utcnow,
)
from coachflow.orchestrator.repository import SessionRepository

logger = get_logger(__name__)

_NON_TERMINAL_TO_CANCELLED = {SessionState.CANCELLED}

# Valid state transitions; any non-terminal state may be cancelled administratively
VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.PENDING_COACH_RESPONSE: {SessionState.SCHEDULED, SessionState.DECLINED} | _NON_TERMINAL_TO_CANCELLED,
    SessionState.SCHEDULED: {SessionState.READY} | _NON_TERMINAL_TO_CANCELLED,
    SessionState.READY: {SessionState.IN_PROGRESS} | _NON_TERMINAL_TO_CANCELLED,
    SessionState.IN_PROGRESS: {SessionState.COMPLETED, SessionState.NO_SHOW} | _NON_TERMINAL_TO_CANCELLED,
    SessionState.COMPLETED: set(),
    SessionState.CANCELLED: set(),
    SessionState.DECLINED: set(),
    SessionState.NO_SHOW: set(),
}

# Sync or async; awaitable results are awaited
EnterCallback = Callable[[Session, TransitionRecord], Any]


def can_transition(old_state: SessionState, new_state: SessionState) -> bool:
    """Whether ``old_state -> new_state`` is in the transition table."""
    return new_state in VALID_TRANSITIONS.get(old_state, set())


def parse_state(value: SessionState | str) -> SessionState:
    """Coerce a state name to SessionState.

    Raises:
        ValidationError: If the name is not a known state
    """
    if isinstance(value, SessionState):
        return value
    try:
        return SessionState(value)
    except ValueError:
        raise ValidationError(f"Unknown session state: {value}", field="newState")


def state_lock_key(session_id: str) -> str:
    return f"{ORCH.LOCK_SESSION_STATE}:{session_id}"


class SessionStateMachine:
    """Lock-guarded transitions over the session repository.

    Usage:
        fsm = SessionStateMachine(repo, locks, capacity)

        fsm.on_enter(SessionState.COMPLETED, queue_outcome_analysis)

        ok = await fsm.transition(session_id, "in_progress", holder_id, "meeting_started")
    """

    def __init__(
        self,
        repository: SessionRepository,
        locks: AdvisoryLock,
        capacity: CapacityGate,
        lock_ttl_s: int = 600,
    ) -> None:
        self._repo = repository
        self._locks = locks
        self._capacity = capacity
        self._lock_ttl = timedelta(seconds=lock_ttl_s)
        self._on_enter_callbacks: dict[SessionState, list[EnterCallback]] = {
            s: [] for s in SessionState
        }
        self._side_effects = SideEffectLogger("state_machine")

    def on_enter(self, state: SessionState, callback: EnterCallback) -> None:
        """Register a best-effort callback for entering ``state``."""
        self._on_enter_callbacks[state].append(callback)

    async def transition(
        self,
        session_id: str,
        new_state: SessionState | str,
        lock_holder_id: str,
        reason: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Apply a transition, reporting busy or rejected as ``False``.

        Returns:
            True if applied; False if the lock was unavailable or the
            transition is not allowed from the current state
        """
        try:
            await self.apply_transition(
                session_id,
                new_state,
                lock_holder_id=lock_holder_id,
                reason=reason,
                metadata=metadata,
            )
        except (LockUnavailableError, InvalidTransitionError):
            return False
        return True

    async def apply_transition(
        self,
        session_id: str,
        new_state: SessionState | str,
        lock_holder_id: str | None = None,
        reason: str = "",
        metadata: dict[str, Any] | None = None,
        changes: dict[str, Any] | None = None,
    ) -> Session:
        """Apply a transition and persist ``changes`` in the same write.

        Args:
            session_id: Session to transition
            new_state: Target state
            lock_holder_id: Identifier of the caller holding the lock
            reason: Human-readable reason for the audit trail
            metadata: Arbitrary audit metadata
            changes: Extra session fields written atomically with the state

        Returns:
            The updated session

        Raises:
            LockUnavailableError: If another holder owns the session lock
            InvalidTransitionError: If the table forbids the transition
            SessionNotFoundError: If the session does not exist
        """
        target = parse_state(new_state)
        holder = lock_holder_id or uuid.uuid4().hex
        session_log = SessionLogger(session_id)
        lock_key = state_lock_key(session_id)

        try:
            async with self._locks.hold(lock_key, owner=holder, session_id=session_id):
                session = await self._repo.get_session(session_id)
                if session is None:
                    raise SessionNotFoundError(session_id)

                if self._held_by_other(session, holder):
                    raise LockUnavailableError(lock_key, session_id=session_id)

                if not can_transition(session.state, target):
                    session_log.transition_rejected(session.state.value, target.value)
                    record_transition(target.value, "rejected")
                    raise InvalidTransitionError(session_id, session.state.value, target.value)

                write = dict(changes or {})
                if target == SessionState.IN_PROGRESS and session.actual_start_time is None:
                    write.setdefault("actual_start_time", utcnow())

                record = TransitionRecord(
                    session_id=session_id,
                    old_state=session.state,
                    new_state=target,
                    locked_by=holder,
                    reason=reason,
                    metadata=dict(metadata or {}),
                )

                await self._repo.claim_session_lock(session_id, holder, reason)
                try:
                    updated = await self._repo.commit_transition(
                        session_id, session.state, record, write
                    )
                finally:
                    await self._repo.release_session_lock(session_id, holder)
        except LockUnavailableError:
            session_log.lock_busy(lock_key)
            record_transition(target.value, "busy")
            raise

        record_transition(target.value, "applied")
        session_log.state_change(
            old_state=record.old_state.value,
            new_state=record.new_state.value,
            reason=reason,
            locked_by=holder,
        )

        if (record.old_state in ACTIVE_STATES) != (record.new_state in ACTIVE_STATES):
            await self._capacity.recompute_capacity()

        await self._call_callbacks(self._on_enter_callbacks[target], updated, record)
        return updated

    def _held_by_other(self, session: Session, holder: str) -> bool:
        """Whether fresh row-level lock metadata belongs to another holder."""
        if not session.locked_by or session.locked_by == holder:
            return False
        if session.locked_at is None:
            return True
        return utcnow() - session.locked_at < self._lock_ttl

    async def cleanup_expired_locks(self) -> int:
        """Reclaim session lock metadata older than the TTL."""
        cleared = await self._repo.clear_expired_session_locks(utcnow() - self._lock_ttl)
        record_locks_reclaimed(cleared)
        if cleared:
            logger.warning("expired_session_locks_reclaimed", count=cleared)
        return cleared

    async def history(self, session_id: str) -> list[TransitionRecord]:
        """Transition audit trail (oldest first)."""
        return await self._repo.list_transitions(session_id)

    async def _call_callbacks(
        self,
        callbacks: list[EnterCallback],
        session: Session,
        record: TransitionRecord,
    ) -> None:
        for callback in callbacks:
            try:
                result = callback(session, record)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._side_effects.failed(
                    action=getattr(callback, "__name__", "on_enter"),
                    error=str(exc),
                    session_id=session.id,
                    new_state=record.new_state.value,
                )
