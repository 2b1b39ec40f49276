"""Recording API Routes - live transcript capture and finalization."""

from typing import Any

from fastapi import APIRouter, Depends

from coachflow.api.auth import verify_api_key
from coachflow.api.deps import container_dependency
from coachflow.api.schemas import ChunkRequest, FinalizeRequest, PauseRequest
from coachflow.container import ServiceContainer
from coachflow.orchestrator.models import SessionRecording, utcnow

router = APIRouter(
    prefix="/recordings",
    tags=["recordings"],
    dependencies=[Depends(verify_api_key)],
)


def recording_body(recording: SessionRecording) -> dict[str, Any]:
    return {
        "sessionId": recording.session_id,
        "status": recording.status.value,
        "paused": recording.paused_since is not None,
        "pausedSegments": [[s.start, s.end] for s in recording.paused_segments],
    }


@router.post("/{session_id}/start")
async def start_recording(
    session_id: str,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    recording = await container.recordings.start_recording(session_id)
    return {"success": True, **recording_body(recording)}


@router.post("/{session_id}/chunks")
async def append_chunk(
    session_id: str,
    body: ChunkRequest,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    """Append a transcript chunk; ``stored`` is false when it fell in a pause."""
    stored = await container.recordings.append_chunk(session_id, body.text, body.start, body.end)
    return {"success": True, "sessionId": session_id, "stored": stored}


@router.post("/{session_id}/pause")
async def pause_transcription(
    session_id: str,
    body: PauseRequest | None = None,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    recording = await container.recordings.pause_transcription(session_id, body.at if body else None)
    return {"success": True, **recording_body(recording)}


@router.post("/{session_id}/resume")
async def resume_transcription(
    session_id: str,
    body: PauseRequest | None = None,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    recording = await container.recordings.resume_transcription(session_id, body.at if body else None)
    return {"success": True, **recording_body(recording)}


@router.post("/{session_id}/finalize")
async def finalize_recording(
    session_id: str,
    body: FinalizeRequest | None = None,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    body = body or FinalizeRequest()
    result = await container.recordings.finalize_recording(
        session_id,
        body.end_time or utcnow(),
        client_notes=body.client_notes,
        coach_notes=body.coach_notes,
        goals=body.goals,
    )
    return {"success": True, **result.to_dict()}
