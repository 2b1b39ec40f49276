"""Video Room Provisioner - at-most-once room creation per session.

Flow, under the advisory lock ``video_room_create:{session_id}``:
1. Existing room on the session -> return it (``idempotent=True``)
2. Otherwise create with the primary provider, falling back to the
   secondary one
3. Persist the room fields together with the transition to READY
4. Upsert an empty recording row

Room fields are written only in step 3, as part of the state transition,
so a failure anywhere leaves them unset and a retry starts from step 1.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from coachflow.config.constants import ORCH
from coachflow.exceptions import (
    InvalidTransitionError,
    SessionNotFoundError,
    VideoProviderError,
    VideoProviderUnavailableError,
)
from coachflow.locking.advisory import AdvisoryLock
from coachflow.observability.logging import RoomLogger
from coachflow.observability.metrics import record_room_created, record_room_idempotent
from coachflow.orchestrator.capacity import CapacityGate
from coachflow.orchestrator.models import Session, SessionRecording, SessionState
from coachflow.orchestrator.repository import RoomAlreadyAssignedError, SessionRepository
from coachflow.orchestrator.state_machine import SessionStateMachine, can_transition
from coachflow.video.base import RoomInfo, RoomSpec, VideoProvider


@dataclass(frozen=True)
class RoomResult:
    room_url: str
    room_name: str
    idempotent: bool
    provider: str | None = None

    def to_dict(self) -> dict:
        return {
            "roomUrl": self.room_url,
            "roomName": self.room_name,
            "idempotent": self.idempotent,
            "provider": self.provider,
        }


def room_lock_key(session_id: str) -> str:
    return f"{ORCH.LOCK_VIDEO_ROOM}:{session_id}"


class VideoRoomProvisioner:
    """Idempotent create-or-fetch of a session's video room.

    Usage:
        provisioner = VideoRoomProvisioner(repo, locks, fsm, capacity, daily, fallback)
        result = await provisioner.ensure_room(session_id)
        redirect(result.room_url)
    """

    def __init__(
        self,
        repository: SessionRepository,
        locks: AdvisoryLock,
        state_machine: SessionStateMachine,
        capacity: CapacityGate,
        primary: VideoProvider,
        fallback: VideoProvider | None = None,
        room_lifetime_s: int = ORCH.ROOM_LIFETIME_S,
    ) -> None:
        self._repo = repository
        self._locks = locks
        self._fsm = state_machine
        self._capacity = capacity
        self._primary = primary
        self._fallback = fallback
        self._room_lifetime_s = room_lifetime_s

    async def ensure_room(
        self,
        session_id: str,
        idempotency_key: str | None = None,
        check_capacity: bool = True,
    ) -> RoomResult:
        """Return the session's room, creating it if absent.

        Args:
            session_id: Session to provision
            idempotency_key: Caller key, used as the lock holder id
            check_capacity: Consult the capacity gate before creating

        Raises:
            LockUnavailableError: Another request is provisioning this session
            SessionNotFoundError: Unknown session
            InvalidTransitionError: Session cannot move to READY
            CapacityExceededError: System at capacity
            VideoProviderUnavailableError: Both providers failed
        """
        holder = idempotency_key or uuid.uuid4().hex
        room_log = RoomLogger(session_id)

        async with self._locks.hold(room_lock_key(session_id), owner=holder, session_id=session_id):
            session = await self._repo.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)

            if session.has_room:
                return self._reused(session, room_log)

            if not can_transition(session.state, SessionState.READY):
                raise InvalidTransitionError(
                    session_id, session.state.value, SessionState.READY.value
                )

            if check_capacity:
                await self._capacity.ensure_capacity("room")

            room = await self._create_room(session_id, room_log)

            try:
                await self._fsm.apply_transition(
                    session_id,
                    SessionState.READY,
                    lock_holder_id=holder,
                    reason="video_room_created",
                    metadata={"videoRoomId": room.name, "provider": room.provider},
                    changes={
                        "video_room_id": room.name,
                        "video_join_url": room.url,
                        "video_provider": room.provider,
                    },
                )
            except RoomAlreadyAssignedError:
                current = await self._repo.get_session(session_id)
                return self._reused(current, room_log)

            await self._ensure_recording(session_id)

        record_room_created(room.provider)
        room_log.room_created(room.provider, room.name)
        return RoomResult(
            room_url=room.url,
            room_name=room.name,
            idempotent=False,
            provider=room.provider,
        )

    def _reused(self, session: Session, room_log: RoomLogger) -> RoomResult:
        record_room_idempotent()
        room_log.room_reused(session.video_room_id or "")
        return RoomResult(
            room_url=session.video_join_url,
            room_name=session.video_room_id or "",
            idempotent=True,
            provider=session.video_provider,
        )

    async def _create_room(self, session_id: str, room_log: RoomLogger) -> RoomInfo:
        spec = RoomSpec.for_session(session_id, self._room_lifetime_s)
        errors: list[str] = []

        try:
            return await self._primary.create_room(spec)
        except VideoProviderError as e:
            room_log.provider_failed(self._primary.name, e.message)
            errors.append(e.message)

        if self._fallback is not None:
            try:
                room = await self._fallback.create_room(spec)
            except VideoProviderError as e:
                room_log.provider_failed(self._fallback.name, e.message)
                errors.append(e.message)
            else:
                room_log.degraded_mode(room.provider, room.url)
                return room

        raise VideoProviderUnavailableError(session_id, errors)

    async def _ensure_recording(self, session_id: str) -> None:
        if await self._repo.get_recording(session_id) is None:
            await self._repo.save_recording(SessionRecording(session_id=session_id))
