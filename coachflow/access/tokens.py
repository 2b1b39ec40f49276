"""Token/Access Issuer - room-scoped meeting credentials and join links.

Two credential kinds:
- Meeting tokens: minted per (session, user) by the video provider, scoped
  to the room, display name, owner flag and an expiry. The coach is the
  meeting owner and auto-starts cloud recording.
- One-time join tokens: opaque, expiring, single-use strings embedded in
  email links. They identify a session for unauthenticated entry.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from coachflow.config.constants import ORCH
from coachflow.exceptions import (
    RateLimitedError,
    RoomNotReadyError,
    SessionNotFoundError,
    TokenExpiredOrUsedError,
    UnauthorizedError,
)
from coachflow.locking.advisory import AdvisoryLock
from coachflow.observability.logging import RoomLogger, get_logger
from coachflow.observability.metrics import record_join_token, record_token_issued
from coachflow.orchestrator.models import Participant, ParticipantRole, Session, utcnow
from coachflow.orchestrator.repository import SessionRepository
from coachflow.video.base import MeetingTokenRequest, VideoProvider
from coachflow.video.provisioner import RoomResult, VideoRoomProvisioner

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedToken:
    """Meeting credential handed back to a session party."""

    join_url: str
    room_url: str
    role: ParticipantRole
    is_owner: bool
    display_name: str
    expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "joinUrl": self.join_url,
            "roomUrl": self.room_url,
            "role": self.role.value,
            "isOwner": self.is_owner,
            "displayName": self.display_name,
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class JoinRedemption:
    session_id: str
    room: RoomResult


class TokenIssuer:
    """Issues meeting credentials and manages one-time join tokens.

    Usage:
        issuer = TokenIssuer(repo, locks, daily)
        issued = await issuer.issue_join_token(session_id, user_id)
        token, expires_at = await issuer.create_join_token(session_id)
    """

    def __init__(
        self,
        repository: SessionRepository,
        locks: AdvisoryLock,
        provider: VideoProvider,
        meeting_token_lifetime_s: int = ORCH.MEETING_TOKEN_LIFETIME_S,
        join_token_lifetime_s: int = ORCH.JOIN_TOKEN_LIFETIME_S,
        rate_limit_attempts: int = ORCH.JOIN_RATE_LIMIT_ATTEMPTS,
        rate_limit_window_s: int = ORCH.JOIN_RATE_LIMIT_WINDOW_S,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self._locks = locks
        self._provider = provider
        self._meeting_token_lifetime = timedelta(seconds=meeting_token_lifetime_s)
        self._join_token_lifetime = timedelta(seconds=join_token_lifetime_s)
        self._rate_limit_attempts = rate_limit_attempts
        self._rate_limit_window = timedelta(seconds=rate_limit_window_s)
        self._clock = clock

    # -------------------------------------------------------------------------
    # Meeting tokens
    # -------------------------------------------------------------------------

    async def issue_join_token(self, session_id: str, user_id: str) -> IssuedToken:
        """Mint a room-scoped credential for a party to the session.

        Raises:
            SessionNotFoundError: Unknown session
            UnauthorizedError: Caller is neither the coach nor the client
            RoomNotReadyError: Session has no video room yet
            VideoProviderError: Provider refused to mint the token
        """
        session = await self._repo.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        role, display_name = await self._resolve_role(session, user_id)
        if not session.has_room or not session.video_room_id:
            raise RoomNotReadyError(session_id)

        is_owner = role == ParticipantRole.COACH
        now = self._clock()
        expires_at = now + self._meeting_token_lifetime
        room_url = session.video_join_url

        if session.video_provider == self._provider.name and self._provider.supports_tokens:
            token = await self._provider.create_meeting_token(
                MeetingTokenRequest(
                    room_name=session.video_room_id,
                    user_name=display_name,
                    user_id=user_id,
                    is_owner=is_owner,
                    expires_at=expires_at,
                    start_cloud_recording=is_owner,
                )
            )
            join_url = f"{room_url}?t={token}"
        else:
            # Degraded rooms carry no access scoping
            RoomLogger(session_id).degraded_mode(session.video_provider or "unknown", room_url)
            join_url = room_url

        existing = await self._repo.get_participant(session_id, user_id)
        participant = existing or Participant(
            session_id=session_id,
            user_id=user_id,
            role=role,
            display_name=display_name,
        )
        participant.role = role
        participant.display_name = display_name
        participant.meeting_token_issued_at = now
        await self._repo.upsert_participant(participant)

        record_token_issued(role.value)
        logger.info(
            "meeting_token_issued",
            session_id=session_id,
            user_id=user_id,
            role=role.value,
            is_owner=is_owner,
        )
        return IssuedToken(
            join_url=join_url,
            room_url=room_url,
            role=role,
            is_owner=is_owner,
            display_name=display_name,
            expires_at=expires_at,
        )

    async def _resolve_role(self, session: Session, user_id: str) -> tuple[ParticipantRole, str]:
        coach = await self._repo.get_coach(session.coach_id)
        if coach is not None and coach.user_id == user_id:
            return ParticipantRole.COACH, coach.name or "Coach"
        if session.client_id and session.client_id == user_id:
            profile = await self._repo.get_profile(user_id)
            name = profile.full_name if profile and profile.full_name else "Client"
            return ParticipantRole.CLIENT, name
        logger.warning("meeting_token_denied", session_id=session.id, user_id=user_id)
        raise UnauthorizedError()

    # -------------------------------------------------------------------------
    # One-time join tokens
    # -------------------------------------------------------------------------

    async def create_join_token(self, session_id: str) -> tuple[str, datetime]:
        """Attach a fresh single-use join token to the session."""
        token = secrets.token_urlsafe(32)
        expires_at = self._clock() + self._join_token_lifetime
        await self._repo.update_session_fields(
            session_id,
            join_token=token,
            token_expires_at=expires_at,
            token_used_at=None,
            join_attempts=[],
        )
        return token, expires_at

    async def resolve_join_token(self, token: str) -> Session:
        """Look a token up without consuming it.

        Raises:
            SessionNotFoundError: No session carries this token
            TokenExpiredOrUsedError: Token expired or already consumed
        """
        session = await self._repo.find_session_by_join_token(token)
        if session is None:
            record_join_token("not_found")
            raise SessionNotFoundError()
        self._check_token(session)
        return session

    async def redeem_join_token(
        self,
        token: str,
        provisioner: VideoRoomProvisioner,
    ) -> JoinRedemption:
        """Consume a join token, provisioning the room on first use.

        The token is marked used only after a room is available, so a
        provider outage leaves it redeemable.

        Raises:
            SessionNotFoundError: No session carries this token
            TokenExpiredOrUsedError: Token expired or already consumed
            RateLimitedError: Too many attempts in the window
            VideoProviderUnavailableError: Room could not be provisioned
        """
        found = await self.resolve_join_token(token)
        session_id = found.id

        async with self._locks.hold(f"{ORCH.LOCK_JOIN_TOKEN}:{session_id}", session_id=session_id):
            session = await self._repo.get_session(session_id)
            if session is None or session.join_token != token:
                record_join_token("not_found")
                raise SessionNotFoundError(session_id)
            self._check_token(session)

            now = self._clock()
            recent = [t for t in session.join_attempts if now - t < self._rate_limit_window]
            if len(recent) >= self._rate_limit_attempts:
                record_join_token("rate_limited")
                logger.warning("join_rate_limited", session_id=session_id, attempts=len(recent))
                raise RateLimitedError(len(recent), int(self._rate_limit_window.total_seconds()))

            await self._repo.update_session_fields(
                session_id, join_attempts=[*session.join_attempts, now]
            )

            room = await provisioner.ensure_room(
                session_id,
                idempotency_key=f"{session_id}-{session.scheduled_time.isoformat()}",
            )
            await self._repo.update_session_fields(session_id, token_used_at=self._clock())

        record_join_token("redeemed")
        logger.info("join_token_redeemed", session_id=session_id, idempotent=room.idempotent)
        return JoinRedemption(session_id=session_id, room=room)

    def _check_token(self, session: Session) -> None:
        if session.token_expires_at is not None and self._clock() > session.token_expires_at:
            record_join_token("expired")
            raise TokenExpiredOrUsedError(TokenExpiredOrUsedError.EXPIRED, session.id)
        if session.token_used_at is not None:
            record_join_token("used")
            raise TokenExpiredOrUsedError(TokenExpiredOrUsedError.USED, session.id)
