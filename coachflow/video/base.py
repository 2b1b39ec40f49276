"""Video Provider Interface - pluggable room providers.

Providers create rooms and (optionally) mint room-scoped meeting tokens.
The provisioner tries the primary provider first and falls back to the
secondary one; each provider reports failure by raising
``VideoProviderError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from coachflow.config.constants import ORCH
from coachflow.exceptions import VideoProviderError
from coachflow.orchestrator.models import utcnow


@dataclass(frozen=True)
class RoomSpec:
    """Room creation request."""

    name: str
    not_before: datetime
    expires_at: datetime
    max_participants: int = ORCH.ROOM_MAX_PARTICIPANTS
    enable_recording: str = "cloud"
    enable_screenshare: bool = True
    enable_chat: bool = True

    @classmethod
    def for_session(cls, session_id: str, lifetime_s: int) -> RoomSpec:
        """Build the standard 1:1 room spec for a session, valid from now."""
        now = utcnow()
        return cls(
            name=f"session-{session_id}-{int(now.timestamp() * 1000)}",
            not_before=now,
            expires_at=now + timedelta(seconds=lifetime_s),
        )


@dataclass(frozen=True)
class RoomInfo:
    """Created room."""

    name: str
    url: str
    provider: str
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class MeetingTokenRequest:
    """Room-scoped credential request."""

    room_name: str
    user_name: str
    user_id: str
    is_owner: bool
    expires_at: datetime
    start_cloud_recording: bool = False


class VideoProvider(ABC):
    """Base class for video room providers."""

    name: str = "unknown"

    @property
    def supports_tokens(self) -> bool:
        """Whether the provider can mint room-scoped meeting tokens."""
        return False

    @abstractmethod
    async def create_room(self, spec: RoomSpec) -> RoomInfo:
        """Create a room.

        Raises:
            VideoProviderError: On any provider failure
        """
        ...

    async def create_meeting_token(self, request: MeetingTokenRequest) -> str:
        """Mint a meeting token for a room.

        Raises:
            VideoProviderError: If unsupported or the call fails
        """
        raise VideoProviderError(self.name, "meeting tokens unsupported")

    async def close(self) -> None:
        """Release provider resources."""
        return None
