"""Session API Routes - state, capacity, rooms and credentials.

Provides REST endpoints for session orchestration:
- Apply a state transition
- Read the capacity snapshot
- Provision the session's video room (idempotent)
- Issue a meeting credential to a session party
- Instant-connect requests and coach responses
- Lock cleanup and session cleanup
"""

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from coachflow.api.auth import require_user_id, verify_api_key
from coachflow.api.deps import container_dependency
from coachflow.api.ratelimit import ROOM_CREATE_LIMIT, limiter
from coachflow.api.schemas import (
    EnsureRoomRequest,
    InstantSessionRequest,
    RespondRequest,
    UpdateStateRequest,
)
from coachflow.container import ServiceContainer
from coachflow.orchestrator.models import Session

router = APIRouter(
    prefix="/sessions",
    tags=["sessions"],
    dependencies=[Depends(verify_api_key)],
)


def session_body(session: Session) -> dict[str, Any]:
    return {
        "sessionId": session.id,
        "state": session.state.value,
        "scheduledTime": session.scheduled_time.isoformat(),
        "durationMinutes": session.duration_minutes,
        "videoJoinUrl": session.video_join_url,
    }


@router.post("/state")
async def update_state(
    body: UpdateStateRequest,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    """Apply a state transition; busy and invalid transitions answer 409."""
    session = await container.state_machine.apply_transition(
        body.session_id,
        body.new_state,
        lock_holder_id=body.lock_holder_id,
        reason=body.reason,
        metadata=body.metadata,
    )
    return {"success": True, **session_body(session)}


@router.get("/capacity")
async def get_capacity(container: ServiceContainer = Depends(container_dependency)) -> dict[str, Any]:
    check = await container.capacity.check_capacity()
    return {"success": True, **check.to_dict()}


@router.post("/locks/cleanup")
async def cleanup_locks(container: ServiceContainer = Depends(container_dependency)) -> dict[str, Any]:
    cleared = await container.state_machine.cleanup_expired_locks()
    return {"success": True, "cleared": cleared}


@router.post("/instant")
async def create_instant_session(
    body: InstantSessionRequest,
    user_id: str = Depends(require_user_id),
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    """Create an instant-connect request awaiting the coach's response."""
    session = await container.booking.create_instant_session(
        body.coach_id,
        user_id,
        user_goal=body.user_goal,
        client_bio=body.client_bio,
    )
    return {"success": True, **session_body(session)}


@router.post("/{session_id}/room")
@limiter.limit(ROOM_CREATE_LIMIT)
async def ensure_room(
    request: Request,
    response: Response,
    session_id: str,
    body: EnsureRoomRequest | None = None,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    """Return the session's room, creating it on first call."""
    room = await container.provisioner.ensure_room(
        session_id,
        idempotency_key=body.idempotency_key if body else None,
    )
    return {"success": True, **room.to_dict()}


@router.post("/{session_id}/token")
async def issue_token(
    session_id: str,
    user_id: str = Depends(require_user_id),
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    issued = await container.issuer.issue_join_token(session_id, user_id)
    return {"success": True, **issued.to_dict()}


@router.post("/{session_id}/respond")
async def respond_to_request(
    session_id: str,
    body: RespondRequest,
    user_id: str = Depends(require_user_id),
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    session = await container.booking.respond_to_request(session_id, user_id, body.action)
    return {"success": True, **session_body(session)}


@router.post("/{session_id}/cleanup")
async def cleanup_session(
    session_id: str,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    """Reclaim stale locks, complete the session and refresh capacity."""
    session = await container.cleanup_session(session_id)
    return {"success": True, **session_body(session)}


@router.get("/{session_id}/history")
async def transition_history(
    session_id: str,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    records = await container.state_machine.history(session_id)
    return {
        "success": True,
        "transitions": [
            {
                "oldState": r.old_state.value,
                "newState": r.new_state.value,
                "lockedBy": r.locked_by,
                "reason": r.reason,
                "metadata": r.metadata,
                "at": r.at.isoformat(),
            }
            for r in records
        ],
    }
