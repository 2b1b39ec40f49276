"""Session Repository - persistence contract for orchestration state.

The orchestration services depend only on ``SessionRepository``. The
bundled ``InMemorySessionRepository`` keeps every table in process memory
and hands out copies, so the only way to change a stored record is through
a repository call.

Session state and video-room fields are writable exclusively through
``commit_transition``; ``update_session_fields`` refuses them.
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable

from coachflow.exceptions import InvalidTransitionError, SessionNotFoundError
from coachflow.orchestrator.models import (
    Coach,
    GuestSession,
    OutboxItem,
    OutboxStatus,
    Participant,
    Profile,
    Session,
    SessionRecording,
    SessionState,
    SystemCapacity,
    TransitionRecord,
    UserResponse,
    utcnow,
)

ROOM_FIELDS: frozenset[str] = frozenset({"video_room_id", "video_join_url", "video_provider"})
GUARDED_FIELDS: frozenset[str] = ROOM_FIELDS | {"state", "locked_by", "locked_at", "lock_reason"}


class RoomAlreadyAssignedError(Exception):
    """Raised when a write would overwrite existing video room fields."""


class SessionRepository(ABC):
    """Abstract persistence for sessions and their satellite records."""

    # -- sessions -------------------------------------------------------------

    @abstractmethod
    async def get_session(self, session_id: str) -> Session | None: ...

    @abstractmethod
    async def find_session_by_join_token(self, token: str) -> Session | None: ...

    @abstractmethod
    async def find_session_by_room(self, room_name: str, room_url: str | None = None) -> Session | None: ...

    @abstractmethod
    async def insert_session(self, session: Session) -> Session: ...

    @abstractmethod
    async def list_sessions(self, states: Iterable[SessionState] | None = None) -> list[Session]: ...

    @abstractmethod
    async def count_sessions(self, states: Iterable[SessionState]) -> int: ...

    @abstractmethod
    async def update_session_fields(self, session_id: str, **changes: Any) -> Session: ...

    @abstractmethod
    async def claim_session_lock(self, session_id: str, holder: str, reason: str) -> None: ...

    @abstractmethod
    async def release_session_lock(self, session_id: str, holder: str) -> None: ...

    @abstractmethod
    async def clear_expired_session_locks(self, older_than: datetime) -> int: ...

    @abstractmethod
    async def commit_transition(
        self,
        session_id: str,
        expected_state: SessionState,
        record: TransitionRecord,
        changes: dict[str, Any] | None = None,
    ) -> Session: ...

    @abstractmethod
    async def list_transitions(self, session_id: str) -> list[TransitionRecord]: ...

    # -- capacity -------------------------------------------------------------

    @abstractmethod
    async def get_capacity(self) -> SystemCapacity: ...

    @abstractmethod
    async def save_capacity(self, capacity: SystemCapacity) -> None: ...

    # -- recordings -----------------------------------------------------------

    @abstractmethod
    async def get_recording(self, session_id: str) -> SessionRecording | None: ...

    @abstractmethod
    async def save_recording(self, recording: SessionRecording) -> SessionRecording: ...

    # -- participants ---------------------------------------------------------

    @abstractmethod
    async def get_participant(self, session_id: str, user_id: str) -> Participant | None: ...

    @abstractmethod
    async def upsert_participant(self, participant: Participant) -> Participant: ...

    @abstractmethod
    async def list_participants(self, session_id: str) -> list[Participant]: ...

    # -- people ---------------------------------------------------------------

    @abstractmethod
    async def get_coach(self, coach_id: str) -> Coach | None: ...

    @abstractmethod
    async def save_coach(self, coach: Coach) -> None: ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> Profile | None: ...

    @abstractmethod
    async def save_profile(self, profile: Profile) -> None: ...

    # -- guest / assessment ---------------------------------------------------

    @abstractmethod
    async def get_guest_session(self, guest_session_id: str) -> GuestSession | None: ...

    @abstractmethod
    async def save_guest_session(self, guest: GuestSession) -> None: ...

    @abstractmethod
    async def get_user_response(self, response_id: str) -> UserResponse | None: ...

    @abstractmethod
    async def find_user_response(self, guest_session_id: str, user_id: str) -> UserResponse | None: ...

    @abstractmethod
    async def insert_user_response(self, response: UserResponse) -> UserResponse: ...

    @abstractmethod
    async def link_user_response(self, response_id: str, session_id: str) -> bool: ...

    # -- outbox ---------------------------------------------------------------

    @abstractmethod
    async def find_outbox_item(self, dedup_key: str) -> OutboxItem | None: ...

    @abstractmethod
    async def insert_outbox_item(self, item: OutboxItem) -> OutboxItem: ...

    @abstractmethod
    async def list_outbox_due(self, now: datetime, limit: int) -> list[OutboxItem]: ...

    @abstractmethod
    async def save_outbox_item(self, item: OutboxItem) -> None: ...

    @abstractmethod
    async def purge_outbox(self, statuses: Iterable[OutboxStatus], older_than: datetime) -> int: ...


class InMemorySessionRepository(SessionRepository):
    """Process-local repository.

    Usage:
        repo = InMemorySessionRepository()
        await repo.insert_session(session)
        stored = await repo.get_session(session.id)
    """

    def __init__(self, capacity: SystemCapacity | None = None) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, Session] = {}
        self._transitions: dict[str, list[TransitionRecord]] = {}
        self._capacity = capacity or SystemCapacity()
        self._recordings: dict[str, SessionRecording] = {}
        self._participants: dict[tuple[str, str], Participant] = {}
        self._coaches: dict[str, Coach] = {}
        self._profiles: dict[str, Profile] = {}
        self._guests: dict[str, GuestSession] = {}
        self._responses: dict[str, UserResponse] = {}
        self._outbox: dict[str, OutboxItem] = {}

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    # -- sessions -------------------------------------------------------------

    async def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def find_session_by_join_token(self, token: str) -> Session | None:
        for session in self._sessions.values():
            if session.join_token and session.join_token == token:
                return copy.deepcopy(session)
        return None

    async def find_session_by_room(self, room_name: str, room_url: str | None = None) -> Session | None:
        for session in self._sessions.values():
            if session.video_room_id == room_name or (room_url and session.video_join_url == room_url):
                return copy.deepcopy(session)
        return None

    async def insert_session(self, session: Session) -> Session:
        async with self._lock:
            if session.id in self._sessions:
                raise ValueError(f"Session already exists: {session.id}")
            self._sessions[session.id] = copy.deepcopy(session)
        return copy.deepcopy(session)

    async def list_sessions(self, states: Iterable[SessionState] | None = None) -> list[Session]:
        wanted = set(states) if states is not None else None
        return [
            copy.deepcopy(s)
            for s in self._sessions.values()
            if wanted is None or s.state in wanted
        ]

    async def count_sessions(self, states: Iterable[SessionState]) -> int:
        wanted = set(states)
        return sum(1 for s in self._sessions.values() if s.state in wanted)

    async def update_session_fields(self, session_id: str, **changes: Any) -> Session:
        guarded = GUARDED_FIELDS.intersection(changes)
        if guarded:
            raise ValueError(f"Fields only writable through transitions: {sorted(guarded)}")
        async with self._lock:
            session = self._require(session_id)
            for name, value in changes.items():
                if not hasattr(session, name):
                    raise AttributeError(f"Unknown session field: {name}")
                setattr(session, name, copy.deepcopy(value))
            session.updated_at = utcnow()
            return copy.deepcopy(session)

    async def claim_session_lock(self, session_id: str, holder: str, reason: str) -> None:
        async with self._lock:
            session = self._require(session_id)
            session.locked_by = holder
            session.locked_at = utcnow()
            session.lock_reason = reason

    async def release_session_lock(self, session_id: str, holder: str) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.locked_by == holder:
                session.locked_by = None
                session.locked_at = None
                session.lock_reason = None

    async def clear_expired_session_locks(self, older_than: datetime) -> int:
        cleared = 0
        async with self._lock:
            for session in self._sessions.values():
                if session.locked_by and session.locked_at and session.locked_at < older_than:
                    session.locked_by = None
                    session.locked_at = None
                    session.lock_reason = None
                    cleared += 1
        return cleared

    async def commit_transition(
        self,
        session_id: str,
        expected_state: SessionState,
        record: TransitionRecord,
        changes: dict[str, Any] | None = None,
    ) -> Session:
        changes = changes or {}
        async with self._lock:
            session = self._require(session_id)
            if session.state != expected_state:
                raise InvalidTransitionError(
                    session_id, session.state.value, record.new_state.value
                )
            for name in ROOM_FIELDS.intersection(changes):
                if getattr(session, name):
                    raise RoomAlreadyAssignedError(session_id)
            for name, value in changes.items():
                if not hasattr(session, name):
                    raise AttributeError(f"Unknown session field: {name}")
                setattr(session, name, copy.deepcopy(value))
            session.state = record.new_state
            session.updated_at = record.at
            self._transitions.setdefault(session_id, []).append(copy.deepcopy(record))
            return copy.deepcopy(session)

    async def list_transitions(self, session_id: str) -> list[TransitionRecord]:
        return copy.deepcopy(self._transitions.get(session_id, []))

    # -- capacity -------------------------------------------------------------

    async def get_capacity(self) -> SystemCapacity:
        return copy.deepcopy(self._capacity)

    async def save_capacity(self, capacity: SystemCapacity) -> None:
        self._capacity = copy.deepcopy(capacity)

    # -- recordings -----------------------------------------------------------

    async def get_recording(self, session_id: str) -> SessionRecording | None:
        recording = self._recordings.get(session_id)
        return copy.deepcopy(recording) if recording else None

    async def save_recording(self, recording: SessionRecording) -> SessionRecording:
        recording.updated_at = utcnow()
        self._recordings[recording.session_id] = copy.deepcopy(recording)
        return copy.deepcopy(recording)

    # -- participants ---------------------------------------------------------

    async def get_participant(self, session_id: str, user_id: str) -> Participant | None:
        participant = self._participants.get((session_id, user_id))
        return copy.deepcopy(participant) if participant else None

    async def upsert_participant(self, participant: Participant) -> Participant:
        self._participants[(participant.session_id, participant.user_id)] = copy.deepcopy(participant)
        return copy.deepcopy(participant)

    async def list_participants(self, session_id: str) -> list[Participant]:
        return [copy.deepcopy(p) for (sid, _), p in self._participants.items() if sid == session_id]

    # -- people ---------------------------------------------------------------

    async def get_coach(self, coach_id: str) -> Coach | None:
        coach = self._coaches.get(coach_id)
        return copy.deepcopy(coach) if coach else None

    async def save_coach(self, coach: Coach) -> None:
        self._coaches[coach.id] = copy.deepcopy(coach)

    async def get_profile(self, user_id: str) -> Profile | None:
        profile = self._profiles.get(user_id)
        return copy.deepcopy(profile) if profile else None

    async def save_profile(self, profile: Profile) -> None:
        self._profiles[profile.user_id] = copy.deepcopy(profile)

    # -- guest / assessment ---------------------------------------------------

    async def get_guest_session(self, guest_session_id: str) -> GuestSession | None:
        guest = self._guests.get(guest_session_id)
        return copy.deepcopy(guest) if guest else None

    async def save_guest_session(self, guest: GuestSession) -> None:
        self._guests[guest.session_id] = copy.deepcopy(guest)

    async def get_user_response(self, response_id: str) -> UserResponse | None:
        response = self._responses.get(response_id)
        return copy.deepcopy(response) if response else None

    async def find_user_response(self, guest_session_id: str, user_id: str) -> UserResponse | None:
        for response in self._responses.values():
            if response.guest_session_id == guest_session_id and response.user_id == user_id:
                return copy.deepcopy(response)
        return None

    async def insert_user_response(self, response: UserResponse) -> UserResponse:
        async with self._lock:
            if response.guest_session_id and any(
                r.guest_session_id == response.guest_session_id and r.user_id == response.user_id
                for r in self._responses.values()
            ):
                raise ValueError("Guest session already migrated for this user")
            self._responses[response.id] = copy.deepcopy(response)
        return copy.deepcopy(response)

    async def link_user_response(self, response_id: str, session_id: str) -> bool:
        response = self._responses.get(response_id)
        if response is None:
            return False
        response.session_id = session_id
        return True

    # -- outbox ---------------------------------------------------------------

    async def find_outbox_item(self, dedup_key: str) -> OutboxItem | None:
        for item in self._outbox.values():
            if item.dedup_key == dedup_key:
                return copy.deepcopy(item)
        return None

    async def insert_outbox_item(self, item: OutboxItem) -> OutboxItem:
        async with self._lock:
            if any(existing.dedup_key == item.dedup_key for existing in self._outbox.values()):
                raise ValueError(f"Duplicate outbox dedup key: {item.dedup_key}")
            self._outbox[item.id] = copy.deepcopy(item)
        return copy.deepcopy(item)

    async def list_outbox_due(self, now: datetime, limit: int) -> list[OutboxItem]:
        due = [
            item
            for item in self._outbox.values()
            if item.scheduled_for <= now
            and (
                item.status == OutboxStatus.PENDING
                or (item.status == OutboxStatus.FAILED and item.attempts < item.max_attempts)
            )
        ]
        due.sort(key=lambda item: item.created_at)
        return [copy.deepcopy(item) for item in due[:limit]]

    async def save_outbox_item(self, item: OutboxItem) -> None:
        self._outbox[item.id] = copy.deepcopy(item)

    async def purge_outbox(self, statuses: Iterable[OutboxStatus], older_than: datetime) -> int:
        wanted = set(statuses)
        stale = [
            item_id
            for item_id, item in self._outbox.items()
            if item.status in wanted and item.created_at < older_than
        ]
        for item_id in stale:
            del self._outbox[item_id]
        return len(stale)
