"""Domain records for coaching sessions.

Plain dataclasses shared by the repository and the orchestration
services. Loosely-typed provider payloads are projected into these
records at the boundary; nothing downstream handles raw dicts except the
free-form ``metadata``/``payload`` audit fields.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class SessionState(Enum):
    """Canonical session lifecycle states."""

    PENDING_COACH_RESPONSE = "pending_coach_response"
    SCHEDULED = "scheduled"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DECLINED = "declined"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: frozenset[SessionState] = frozenset({
    SessionState.COMPLETED,
    SessionState.CANCELLED,
    SessionState.DECLINED,
    SessionState.NO_SHOW,
})

# Sessions holding a live video room count against capacity
ACTIVE_STATES: frozenset[SessionState] = frozenset({
    SessionState.READY,
    SessionState.IN_PROGRESS,
})


class RecordingStatus(Enum):
    """Recording / transcription status."""

    INITIALIZED = "initialized"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class ParticipantRole(Enum):
    COACH = "coach"
    CLIENT = "client"


class OutboxStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Session:
    """Central session record."""

    id: str
    coach_id: str
    client_id: str | None
    scheduled_time: datetime
    duration_minutes: int
    price_amount: float = 0.0
    price_currency: str = "GBP"
    coin_cost: int = 0
    state: SessionState = SessionState.SCHEDULED

    # Row-level lock metadata, set only while a transition is being applied
    locked_by: str | None = None
    locked_at: datetime | None = None
    lock_reason: str | None = None

    # One-time join token for email links
    join_token: str | None = None
    token_expires_at: datetime | None = None
    token_used_at: datetime | None = None
    join_attempts: list[datetime] = field(default_factory=list)

    # Video linkage, write-once
    video_room_id: str | None = None
    video_join_url: str | None = None
    video_provider: str | None = None

    actual_start_time: datetime | None = None
    notes: str | None = None
    participant_status: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_room(self) -> bool:
        return bool(self.video_join_url)

    def public_view(self) -> dict[str, Any]:
        """Non-sensitive fields safe to expose to join-link holders."""
        return {
            "id": self.id,
            "scheduled_time": self.scheduled_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "session_state": self.state.value,
            "video_join_url": self.video_join_url,
        }


@dataclass
class TransitionRecord:
    """Audit trail entry for an applied transition."""

    session_id: str
    old_state: SessionState
    new_state: SessionState
    locked_by: str
    reason: str
    metadata: dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=utcnow)


@dataclass
class SystemCapacity:
    """Process-wide capacity aggregate, recomputed from the session table."""

    active_sessions_count: int = 0
    max_sessions_limit: int = 100
    db_connections_used: int = 0
    max_db_connections: int = 60
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PausedSegment:
    """Time range (seconds from recording start) excluded from transcription."""

    start: float
    end: float

    def overlaps(self, start: float, end: float) -> bool:
        """Whether a transcript span [start, end] touches this range."""
        return (
            (self.start <= start <= self.end)
            or (self.start <= end <= self.end)
            or (start <= self.start and end >= self.end)
        )


@dataclass
class PrivacySettings:
    redaction_method: str = "silence"  # silence | remove
    auto_redact_pauses: bool = True
    retain_original: bool = False


@dataclass
class SessionRecording:
    """Recording and transcript state for one session."""

    session_id: str
    status: RecordingStatus = RecordingStatus.INITIALIZED
    transcript: str = ""
    recording_url: str | None = None  # transcript source URL
    media_url: str | None = None
    duration_seconds: int = 0
    sentiment_analysis: dict[str, Any] = field(default_factory=dict)
    emotional_journey: list[Any] = field(default_factory=list)
    key_topics: list[str] = field(default_factory=list)
    ai_summary: str | None = None
    paused_segments: list[PausedSegment] = field(default_factory=list)
    paused_since: float | None = None
    privacy: PrivacySettings = field(default_factory=PrivacySettings)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Participant:
    """One issuance/presence record per (session, user)."""

    session_id: str
    user_id: str
    role: ParticipantRole
    display_name: str
    meeting_token_issued_at: datetime | None = None
    joined_at: datetime | None = None
    left_at: datetime | None = None


@dataclass
class Coach:
    id: str
    user_id: str
    name: str
    hourly_rate_amount: float = 0.0
    hourly_coin_cost: int = 0
    min_session_duration: int | None = None
    max_session_duration: int | None = None
    notification_email: str | None = None


@dataclass
class Profile:
    user_id: str
    full_name: str | None = None
    email: str | None = None


@dataclass
class GuestSession:
    """Pre-auth assessment captured before the visitor signed up."""

    session_id: str
    selected_goal: str | None = None
    responses: dict[str, Any] = field(default_factory=dict)
    ai_analysis: dict[str, Any] = field(default_factory=dict)
    recommended_coaches: list[str] = field(default_factory=list)
    expires_at: datetime | None = None


@dataclass
class UserResponse:
    """Assessment responses owned by an authenticated user."""

    id: str
    user_id: str
    session_id: str | None = None
    selected_goal: str | None = None
    responses: dict[str, Any] = field(default_factory=dict)
    ai_analysis: dict[str, Any] = field(default_factory=dict)
    recommended_coaches: list[str] = field(default_factory=list)
    guest_session_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class OutboxItem:
    """Durable pending work for a best-effort side call."""

    id: str
    kind: str
    dedup_key: str
    payload: dict[str, Any]
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    scheduled_for: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)
    last_error: str | None = None
