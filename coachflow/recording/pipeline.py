"""Recording & Transcript Pipeline.

Ingests live transcript chunks and provider webhooks for a session:
- Chunks overlapping a paused segment are dropped at ingestion
- Provider transcripts are downloaded, redacted against paused segments
  and stored once per source URL
- Meeting lifecycle events drive session transitions and participant
  presence
- ``finalize_recording`` closes the recording with duration and insights

Webhook handlers assume the signature was already verified by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import httpx
from pydantic import ValidationError as PayloadError

from coachflow.config.constants import ORCH
from coachflow.exceptions import (
    InvalidTransitionError,
    SessionNotFoundError,
    ValidationError,
    VideoProviderError,
)
from coachflow.observability.logging import SideEffectLogger, get_logger
from coachflow.orchestrator.models import (
    Participant,
    ParticipantRole,
    PausedSegment,
    RecordingStatus,
    Session,
    SessionRecording,
    SessionState,
    utcnow,
)
from coachflow.orchestrator.repository import SessionRepository
from coachflow.orchestrator.state_machine import SessionStateMachine
from coachflow.outbox import ANALYZE_USER_BEHAVIOR, OutboxQueue
from coachflow.recording.events import (
    MediaData,
    MeetingData,
    ParticipantData,
    TranscriptionCompleted,
    WebhookEnvelope,
)
from coachflow.recording.insights import InsightGenerator, SessionInsights
from coachflow.recording.redaction import apply_privacy, format_cue
from coachflow.utils.async_timeout import AsyncTimeoutError, with_timeout

logger = get_logger(__name__)

WEBHOOK_HOLDER = "webhook:daily"


@dataclass
class FinalizeResult:
    session_id: str
    duration_seconds: int
    summary: str | None
    key_topics: list[str] = field(default_factory=list)
    analyzed: bool = False

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "durationSeconds": self.duration_seconds,
            "summary": self.summary,
            "keyTopics": self.key_topics,
            "analyzed": self.analyzed,
        }


class RecordingPipeline:
    """Recording lifecycle and transcript ingestion.

    Usage:
        pipeline = RecordingPipeline(repo, fsm, outbox, ExtractiveInsightGenerator())
        await pipeline.start_recording(session_id)
        await pipeline.append_chunk(session_id, "Hello", start=0.0, end=1.5)
        result = await pipeline.finalize_recording(session_id, utcnow())
    """

    def __init__(
        self,
        repository: SessionRepository,
        state_machine: SessionStateMachine,
        outbox: OutboxQueue,
        insights: InsightGenerator,
        http_client: httpx.AsyncClient | None = None,
        download_timeout_s: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self._fsm = state_machine
        self._outbox = outbox
        self._insights = insights
        self._http = http_client
        self._owns_http = http_client is None
        self._download_timeout_s = download_timeout_s
        self._clock = clock
        self._side_effects = SideEffectLogger("recording")

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def _require_session(self, session_id: str) -> Session:
        session = await self._repo.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    # -------------------------------------------------------------------------
    # Live recording
    # -------------------------------------------------------------------------

    async def start_recording(self, session_id: str) -> SessionRecording:
        await self._require_session(session_id)
        recording = await self._repo.get_recording(session_id) or SessionRecording(session_id=session_id)
        if recording.status != RecordingStatus.IN_PROGRESS:
            recording.status = RecordingStatus.IN_PROGRESS
            recording.started_at = recording.started_at or self._clock()
        recording = await self._repo.save_recording(recording)
        logger.info("recording_started", session_id=session_id)
        return recording

    async def _active_recording(self, session_id: str) -> SessionRecording:
        recording = await self._repo.get_recording(session_id)
        if recording is None or recording.status != RecordingStatus.IN_PROGRESS:
            raise ValidationError("Recording has not been started", field="sessionId")
        return recording

    def _offset(self, recording: SessionRecording) -> float:
        if recording.started_at is None:
            return 0.0
        return max(0.0, (self._clock() - recording.started_at).total_seconds())

    async def append_chunk(
        self,
        session_id: str,
        text: str,
        start: float | None = None,
        end: float | None = None,
    ) -> bool:
        """Append transcript text; chunks inside a paused range are dropped.

        Returns:
            True if the chunk was stored
        """
        recording = await self._active_recording(session_id)
        if not text.strip():
            return False

        if start is not None and end is not None:
            if end < start:
                raise ValidationError("Chunk end precedes start", field="end")
            if recording.paused_since is not None and end >= recording.paused_since:
                return False
            if any(segment.overlaps(start, end) for segment in recording.paused_segments):
                return False
            entry = format_cue(start, end, text)
        else:
            if recording.paused_since is not None:
                return False
            entry = text.strip() + "\n"

        separator = "\n" if recording.transcript and not recording.transcript.endswith("\n\n") else ""
        recording.transcript = f"{recording.transcript}{separator}{entry}"
        await self._repo.save_recording(recording)
        return True

    async def pause_transcription(self, session_id: str, at: float | None = None) -> SessionRecording:
        recording = await self._active_recording(session_id)
        if recording.paused_since is None:
            recording.paused_since = self._offset(recording) if at is None else at
            recording = await self._repo.save_recording(recording)
            logger.info("transcription_paused", session_id=session_id, at=recording.paused_since)
        return recording

    async def resume_transcription(self, session_id: str, at: float | None = None) -> SessionRecording:
        recording = await self._active_recording(session_id)
        if recording.paused_since is not None:
            end = self._offset(recording) if at is None else at
            if end < recording.paused_since:
                raise ValidationError("Resume precedes pause", field="at")
            recording.paused_segments.append(PausedSegment(recording.paused_since, end))
            recording.paused_since = None
            recording = await self._repo.save_recording(recording)
            logger.info(
                "transcription_resumed",
                session_id=session_id,
                paused_segments=len(recording.paused_segments),
            )
        return recording

    # -------------------------------------------------------------------------
    # Transcripts from the provider
    # -------------------------------------------------------------------------

    async def handle_transcription_event(self, envelope: WebhookEnvelope) -> dict[str, Any]:
        """Process a verified transcription webhook."""
        if envelope.type != "transcription.completed":
            logger.info("transcription_event_ignored", event_type=envelope.type)
            return {"outcome": "ignored"}
        try:
            event = TranscriptionCompleted.model_validate(envelope.data)
        except PayloadError as e:
            raise ValidationError(f"Malformed transcription event: {e.error_count()} errors", field="data")
        return await self.ingest_transcript(
            event.session_id, event.transcript_url, event.duration_seconds
        )

    async def ingest_transcript(
        self,
        session_id: str,
        transcript_url: str,
        duration_seconds: int | None = None,
    ) -> dict[str, Any]:
        """Download, redact and store a transcript once per source URL."""
        await self._require_session(session_id)
        recording = await self._repo.get_recording(session_id)
        if (
            recording is not None
            and recording.status == RecordingStatus.COMPLETED
            and recording.recording_url == transcript_url
        ):
            logger.info("transcript_already_processed", session_id=session_id)
            return {"outcome": "duplicate", "sessionId": session_id}

        raw = await self._download(transcript_url)
        recording = recording or SessionRecording(session_id=session_id)
        redacted = apply_privacy(raw, recording.paused_segments, recording.privacy)

        recording.transcript = redacted
        recording.recording_url = transcript_url
        if duration_seconds:
            recording.duration_seconds = int(duration_seconds)
        recording.status = RecordingStatus.COMPLETED
        await self._repo.save_recording(recording)

        logger.info(
            "transcript_processed",
            session_id=session_id,
            redacted_segments=len(recording.paused_segments),
            redacted=redacted != raw,
        )
        return {
            "outcome": "processed",
            "sessionId": session_id,
            "redactedSegments": len(recording.paused_segments),
        }

    async def _download(self, url: str) -> str:
        if self._http is None:
            self._http = httpx.AsyncClient(follow_redirects=True)
        try:
            response = await with_timeout(
                self._http.get(url),
                timeout_s=self._download_timeout_s,
                operation="transcript download",
            )
        except AsyncTimeoutError as e:
            raise VideoProviderError("transcription", e.message)
        except httpx.HTTPError as e:
            raise VideoProviderError("transcription", f"{type(e).__name__}: {e}")
        if response.status_code >= 400:
            raise VideoProviderError(
                "transcription", "failed to download transcript", status=response.status_code
            )
        return response.text

    # -------------------------------------------------------------------------
    # Meeting lifecycle events
    # -------------------------------------------------------------------------

    async def handle_daily_event(self, envelope: WebhookEnvelope) -> dict[str, Any]:
        """Dispatch a verified meeting webhook. Unknown events are ignored."""
        handlers = {
            "meeting.started": self._on_meeting_started,
            "meeting.ended": self._on_meeting_ended,
            "participant.joined": self._on_participant,
            "participant.left": self._on_participant,
            "recording.started": self._on_media,
            "recording.ready-to-download": self._on_media,
            "recording.error": self._on_media,
            "transcript.started": self._on_media,
            "transcript.ready-to-download": self._on_media,
            "transcript.error": self._on_media,
        }
        handler = handlers.get(envelope.type)
        if handler is None:
            logger.info("daily_event_ignored", event_type=envelope.type)
            return {"outcome": "ignored", "event": envelope.type}
        try:
            return await handler(envelope.type, envelope.data)
        except PayloadError as e:
            raise ValidationError(
                f"Malformed {envelope.type} event: {e.error_count()} errors", field="data"
            )

    async def _session_for_room(self, room_name: str, room_url: str | None = None) -> Session | None:
        session = await self._repo.find_session_by_room(room_name, room_url)
        if session is None:
            logger.warning("webhook_room_unknown", room_name=room_name)
        return session

    async def _on_meeting_started(self, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        meeting = MeetingData.model_validate(data)
        session = await self._session_for_room(meeting.room_name, meeting.room_url)
        if session is None:
            return {"outcome": "ignored", "event": event_type}
        try:
            await self._fsm.apply_transition(
                session.id,
                SessionState.IN_PROGRESS,
                lock_holder_id=WEBHOOK_HOLDER,
                reason="meeting_started",
                metadata={"meetingId": meeting.meeting_id, "roomName": meeting.room_name},
                changes={"actual_start_time": meeting.started_at or self._clock()},
            )
        except InvalidTransitionError as e:
            logger.info("meeting_event_out_of_order", session_id=session.id, event_type=event_type,
                        current_state=e.current_state)
            return {"outcome": "ignored", "event": event_type, "sessionId": session.id}
        return {"outcome": "processed", "event": event_type, "sessionId": session.id}

    async def _on_meeting_ended(self, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        meeting = MeetingData.model_validate(data)
        session = await self._session_for_room(meeting.room_name, meeting.room_url)
        if session is None:
            return {"outcome": "ignored", "event": event_type}
        try:
            await self._fsm.apply_transition(
                session.id,
                SessionState.COMPLETED,
                lock_holder_id=WEBHOOK_HOLDER,
                reason="meeting_ended",
                metadata={"meetingId": meeting.meeting_id, "duration": meeting.duration},
            )
        except InvalidTransitionError as e:
            logger.info("meeting_event_out_of_order", session_id=session.id, event_type=event_type,
                        current_state=e.current_state)
            return {"outcome": "ignored", "event": event_type, "sessionId": session.id}

        await self.finalize_recording(session.id, meeting.ended_at or self._clock())
        return {"outcome": "processed", "event": event_type, "sessionId": session.id}

    async def _on_participant(self, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        event = ParticipantData.model_validate(data)
        session = await self._session_for_room(event.room_name, event.room_url)
        user_id = event.participant.user_id
        if session is None or not user_id:
            return {"outcome": "ignored", "event": event_type}

        participant = await self._repo.get_participant(session.id, user_id)
        if participant is None:
            role = await self._role_of(session, user_id)
            if role is None:
                logger.warning("participant_not_a_party", session_id=session.id, user_id=user_id)
                return {"outcome": "ignored", "event": event_type, "sessionId": session.id}
            participant = Participant(
                session_id=session.id,
                user_id=user_id,
                role=role,
                display_name=event.participant.user_name or role.value.title(),
            )

        if event_type == "participant.joined":
            participant.joined_at = event.participant.joined_at or self._clock()
            participant.left_at = None
        else:
            participant.left_at = event.participant.left_at or self._clock()
        await self._repo.upsert_participant(participant)
        return {"outcome": "processed", "event": event_type, "sessionId": session.id}

    async def _role_of(self, session: Session, user_id: str) -> ParticipantRole | None:
        coach = await self._repo.get_coach(session.coach_id)
        if coach is not None and coach.user_id == user_id:
            return ParticipantRole.COACH
        if session.client_id == user_id:
            return ParticipantRole.CLIENT
        return None

    async def _on_media(self, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        media = MediaData.model_validate(data)
        session = await self._session_for_room(media.room_name)
        if session is None:
            return {"outcome": "ignored", "event": event_type}

        if event_type == "transcript.ready-to-download" and media.download_url:
            result = await self.ingest_transcript(
                session.id, media.download_url, int(media.duration) if media.duration else None
            )
            return {**result, "event": event_type}

        recording = await self._repo.get_recording(session.id) or SessionRecording(session_id=session.id)
        if event_type.endswith(".started"):
            if recording.status != RecordingStatus.COMPLETED:
                recording.status = RecordingStatus.IN_PROGRESS
            recording.started_at = recording.started_at or self._clock()
        elif event_type.endswith(".error"):
            recording.status = RecordingStatus.ERROR
            logger.warning("recording_provider_error", session_id=session.id, event_type=event_type,
                           error=media.error)
        elif event_type == "recording.ready-to-download" and media.download_url:
            recording.media_url = media.download_url
        await self._repo.save_recording(recording)
        return {"outcome": "processed", "event": event_type, "sessionId": session.id}

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    async def finalize_recording(
        self,
        session_id: str,
        end_time: datetime,
        client_notes: str | None = None,
        coach_notes: str | None = None,
        goals: list[Any] | None = None,
    ) -> FinalizeResult:
        """Close the recording with its duration and analysis.

        Insight generation and the behaviour-analysis hand-off are
        best-effort; their failures are logged and the recording is still
        completed.
        """
        session = await self._require_session(session_id)
        recording = await self._repo.get_recording(session_id) or SessionRecording(session_id=session_id)

        started = session.actual_start_time or session.scheduled_time
        duration = max(0, int((end_time - started).total_seconds()))

        insights = SessionInsights()
        analyzed = False
        if len(recording.transcript) > ORCH.MIN_TRANSCRIPT_FOR_ANALYSIS:
            try:
                insights = await self._insights.analyze(
                    recording.transcript,
                    {
                        "client_notes": client_notes,
                        "coach_notes": coach_notes,
                        "goals": goals or [],
                        "duration_seconds": duration,
                    },
                )
                analyzed = True
            except Exception as exc:
                self._side_effects.failed("generate_insights", str(exc), session_id=session_id)

        recording.ended_at = end_time
        recording.duration_seconds = duration
        recording.ai_summary = insights.summary or "Session completed successfully"
        recording.key_topics = list(insights.key_topics)
        recording.emotional_journey = list(insights.emotional_journey)
        if insights.sentiment:
            recording.sentiment_analysis.update(insights.sentiment)
        recording.status = RecordingStatus.COMPLETED
        recording.paused_since = None
        await self._repo.save_recording(recording)

        if session.client_id:
            try:
                await self._outbox.enqueue(
                    ANALYZE_USER_BEHAVIOR,
                    f"behavior:{session_id}",
                    {
                        "userId": session.client_id,
                        "sessionId": session_id,
                        "durationSeconds": duration,
                        "keyTopics": recording.key_topics,
                    },
                )
            except Exception as exc:
                self._side_effects.failed("queue_behavior_analysis", str(exc), session_id=session_id)

        logger.info(
            "recording_finalized",
            session_id=session_id,
            duration_seconds=duration,
            analyzed=analyzed,
            topics=len(recording.key_topics),
        )
        return FinalizeResult(
            session_id=session_id,
            duration_seconds=duration,
            summary=recording.ai_summary,
            key_topics=recording.key_topics,
            analyzed=analyzed,
        )
