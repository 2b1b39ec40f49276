"""Tests for the Recording & Transcript Pipeline.

Transcript downloads go through httpx.MockTransport.
"""

from datetime import timedelta

import httpx
import pytest

from coachflow.config.constants import ORCH
from coachflow.exceptions import ValidationError, VideoProviderError
from coachflow.orchestrator.models import (
    ParticipantRole,
    PausedSegment,
    RecordingStatus,
    SessionRecording,
    SessionState,
    utcnow,
)
from coachflow.outbox import ANALYZE_USER_BEHAVIOR, OutboxQueue
from coachflow.recording.events import WebhookEnvelope
from coachflow.recording.insights import ExtractiveInsightGenerator, InsightGenerator
from coachflow.recording.pipeline import RecordingPipeline

VTT = """WEBVTT

00:00:05.000 --> 00:00:09.000
Coach: Tell me about your confidence goals.

00:00:31.000 --> 00:00:33.000
Client: This part is private.

00:00:50.000 --> 00:00:55.000
Client: Presenting at work makes me nervous.
"""


class TranscriptServer:
    def __init__(self) -> None:
        self.hits = 0
        self.status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.hits += 1
        return httpx.Response(self.status, text=VTT)


class BrokenInsights(InsightGenerator):
    async def analyze(self, transcript, context):
        raise RuntimeError("analysis backend down")


@pytest.fixture
def server() -> TranscriptServer:
    return TranscriptServer()


@pytest.fixture
def outbox(repo) -> OutboxQueue:
    return OutboxQueue(repo)


@pytest.fixture
def pipeline(repo, fsm, outbox, server) -> RecordingPipeline:
    http = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return RecordingPipeline(repo, fsm, outbox, ExtractiveInsightGenerator(), http_client=http)


async def room_session(make_session, state=SessionState.READY, **fields):
    return await make_session(
        state,
        video_room_id="room-1",
        video_join_url="https://coachflow.daily.co/room-1",
        video_provider="daily",
        **fields,
    )


def envelope(event_type: str, **data) -> WebhookEnvelope:
    return WebhookEnvelope(type=event_type, data=data)


class TestLiveChunks:

    @pytest.mark.asyncio
    async def test_chunks_append_in_order(self, pipeline, make_session, repo):
        session = await make_session(SessionState.IN_PROGRESS)
        await pipeline.start_recording(session.id)

        assert await pipeline.append_chunk(session.id, "Hello there", start=0.0, end=1.5)
        assert await pipeline.append_chunk(session.id, "How are you", start=2.0, end=3.0)

        transcript = (await repo.get_recording(session.id)).transcript
        assert transcript.index("Hello there") < transcript.index("How are you")
        assert "00:00:00.000 --> 00:00:01.500" in transcript

    @pytest.mark.asyncio
    async def test_chunk_requires_started_recording(self, pipeline, make_session):
        session = await make_session(SessionState.IN_PROGRESS)
        with pytest.raises(ValidationError):
            await pipeline.append_chunk(session.id, "Hello")

    @pytest.mark.asyncio
    async def test_paused_chunks_are_dropped(self, pipeline, make_session, repo):
        session = await make_session(SessionState.IN_PROGRESS)
        await pipeline.start_recording(session.id)

        await pipeline.pause_transcription(session.id, at=10.0)
        assert await pipeline.append_chunk(session.id, "secret", start=11.0, end=12.0) is False
        assert await pipeline.append_chunk(session.id, "untimed secret") is False

        recording = await pipeline.resume_transcription(session.id, at=20.0)
        assert recording.paused_segments == [PausedSegment(10.0, 20.0)]

        assert await pipeline.append_chunk(session.id, "late secret", start=19.0, end=21.0) is False
        assert await pipeline.append_chunk(session.id, "back on", start=25.0, end=26.0) is True

        transcript = (await repo.get_recording(session.id)).transcript
        assert "secret" not in transcript
        assert "back on" in transcript

    @pytest.mark.asyncio
    async def test_pause_is_idempotent(self, pipeline, make_session):
        session = await make_session(SessionState.IN_PROGRESS)
        await pipeline.start_recording(session.id)

        await pipeline.pause_transcription(session.id, at=5.0)
        recording = await pipeline.pause_transcription(session.id, at=8.0)
        assert recording.paused_since == 5.0

    @pytest.mark.asyncio
    async def test_resume_before_pause_rejected(self, pipeline, make_session):
        session = await make_session(SessionState.IN_PROGRESS)
        await pipeline.start_recording(session.id)
        await pipeline.pause_transcription(session.id, at=10.0)

        with pytest.raises(ValidationError):
            await pipeline.resume_transcription(session.id, at=9.0)

    @pytest.mark.asyncio
    async def test_chunk_end_before_start_rejected(self, pipeline, make_session):
        session = await make_session(SessionState.IN_PROGRESS)
        await pipeline.start_recording(session.id)
        with pytest.raises(ValidationError):
            await pipeline.append_chunk(session.id, "x", start=5.0, end=4.0)


class TestTranscriptIngestion:

    @pytest.mark.asyncio
    async def test_transcript_redacted_against_paused_segments(self, pipeline, make_session, repo):
        session = await room_session(make_session, SessionState.IN_PROGRESS)
        await repo.save_recording(
            SessionRecording(session_id=session.id, paused_segments=[PausedSegment(30, 35)])
        )

        result = await pipeline.handle_transcription_event(
            envelope(
                "transcription.completed",
                session_id=session.id,
                transcript_url="https://files.example.test/t.vtt",
                duration_seconds=1800,
            )
        )

        assert result["outcome"] == "processed"
        recording = await repo.get_recording(session.id)
        assert recording.status == RecordingStatus.COMPLETED
        assert recording.duration_seconds == 1800
        assert "This part is private." not in recording.transcript
        assert ORCH.REDACTION_MARKER_SILENCE in recording.transcript
        assert "Presenting at work" in recording.transcript

    @pytest.mark.asyncio
    async def test_same_url_processed_once(self, pipeline, make_session, server):
        session = await room_session(make_session, SessionState.IN_PROGRESS)
        url = "https://files.example.test/t.vtt"

        first = await pipeline.ingest_transcript(session.id, url)
        second = await pipeline.ingest_transcript(session.id, url)

        assert first["outcome"] == "processed"
        assert second["outcome"] == "duplicate"
        assert server.hits == 1

    @pytest.mark.asyncio
    async def test_download_failure_surfaces(self, pipeline, make_session, server):
        server.status = 404
        session = await room_session(make_session, SessionState.IN_PROGRESS)

        with pytest.raises(VideoProviderError):
            await pipeline.ingest_transcript(session.id, "https://files.example.test/missing.vtt")

    @pytest.mark.asyncio
    async def test_other_transcription_events_ignored(self, pipeline):
        result = await pipeline.handle_transcription_event(envelope("transcription.started"))
        assert result == {"outcome": "ignored"}

    @pytest.mark.asyncio
    async def test_malformed_transcription_event(self, pipeline):
        with pytest.raises(ValidationError):
            await pipeline.handle_transcription_event(
                envelope("transcription.completed", session_id="abc")
            )


class TestMeetingEvents:

    @pytest.mark.asyncio
    async def test_meeting_started_moves_to_in_progress(self, pipeline, make_session, repo):
        session = await room_session(make_session)

        result = await pipeline.handle_daily_event(
            envelope("meeting.started", room_name="room-1", meeting_id="m-1")
        )

        assert result["outcome"] == "processed"
        stored = await repo.get_session(session.id)
        assert stored.state == SessionState.IN_PROGRESS
        assert stored.actual_start_time is not None

    @pytest.mark.asyncio
    async def test_meeting_ended_completes_and_finalizes(self, pipeline, make_session, repo, outbox):
        started = utcnow() - timedelta(minutes=30)
        session = await room_session(
            make_session, SessionState.IN_PROGRESS, actual_start_time=started
        )

        result = await pipeline.handle_daily_event(
            envelope("meeting.ended", room_name="room-1", ended_at=(started + timedelta(minutes=30)).isoformat())
        )

        assert result["outcome"] == "processed"
        assert (await repo.get_session(session.id)).state == SessionState.COMPLETED
        recording = await repo.get_recording(session.id)
        assert recording.status == RecordingStatus.COMPLETED
        assert recording.duration_seconds == 1800

        item = await repo.find_outbox_item(f"behavior:{session.id}")
        assert item.kind == ANALYZE_USER_BEHAVIOR
        assert item.payload["userId"] == "client-user"

    @pytest.mark.asyncio
    async def test_meeting_ended_out_of_order_is_ignored(self, pipeline, make_session, repo):
        session = await room_session(make_session, SessionState.READY)

        result = await pipeline.handle_daily_event(envelope("meeting.ended", room_name="room-1"))

        assert result["outcome"] == "ignored"
        assert (await repo.get_session(session.id)).state == SessionState.READY

    @pytest.mark.asyncio
    async def test_unknown_room_ignored(self, pipeline):
        result = await pipeline.handle_daily_event(envelope("meeting.started", room_name="nope"))
        assert result["outcome"] == "ignored"

    @pytest.mark.asyncio
    async def test_unknown_event_ignored(self, pipeline):
        result = await pipeline.handle_daily_event(envelope("room.deleted", room_name="room-1"))
        assert result == {"outcome": "ignored", "event": "room.deleted"}

    @pytest.mark.asyncio
    async def test_malformed_event_rejected(self, pipeline):
        with pytest.raises(ValidationError):
            await pipeline.handle_daily_event(envelope("meeting.started"))

    @pytest.mark.asyncio
    async def test_participant_presence(self, pipeline, seeded, make_session, repo):
        session = await room_session(make_session, SessionState.IN_PROGRESS)

        await pipeline.handle_daily_event(
            envelope(
                "participant.joined",
                room_name="room-1",
                participant={"user_id": "coach-user", "user_name": "Alex"},
            )
        )
        joined = await repo.get_participant(session.id, "coach-user")
        assert joined.role == ParticipantRole.COACH
        assert joined.joined_at is not None

        await pipeline.handle_daily_event(
            envelope("participant.left", room_name="room-1", participant={"user_id": "coach-user"})
        )
        assert (await repo.get_participant(session.id, "coach-user")).left_at is not None

    @pytest.mark.asyncio
    async def test_non_party_participant_ignored(self, pipeline, seeded, make_session, repo):
        session = await room_session(make_session, SessionState.IN_PROGRESS)

        result = await pipeline.handle_daily_event(
            envelope("participant.joined", room_name="room-1", participant={"user_id": "intruder"})
        )

        assert result["outcome"] == "ignored"
        assert await repo.list_participants(session.id) == []

    @pytest.mark.asyncio
    async def test_recording_media_events(self, pipeline, make_session, repo):
        session = await room_session(make_session, SessionState.IN_PROGRESS)

        await pipeline.handle_daily_event(envelope("recording.started", room_name="room-1"))
        assert (await repo.get_recording(session.id)).status == RecordingStatus.IN_PROGRESS

        await pipeline.handle_daily_event(
            envelope(
                "recording.ready-to-download",
                room_name="room-1",
                download_url="https://files.example.test/r.mp4",
            )
        )
        assert (await repo.get_recording(session.id)).media_url == "https://files.example.test/r.mp4"

        await pipeline.handle_daily_event(envelope("recording.error", room_name="room-1", error="disk"))
        assert (await repo.get_recording(session.id)).status == RecordingStatus.ERROR

    @pytest.mark.asyncio
    async def test_transcript_ready_ingests(self, pipeline, make_session, repo, server):
        session = await room_session(make_session, SessionState.IN_PROGRESS)

        result = await pipeline.handle_daily_event(
            envelope(
                "transcript.ready-to-download",
                room_name="room-1",
                download_url="https://files.example.test/t.vtt",
                duration=600,
            )
        )

        assert result["outcome"] == "processed"
        assert server.hits == 1
        assert (await repo.get_recording(session.id)).duration_seconds == 600


class TestFinalize:

    @pytest.mark.asyncio
    async def test_short_transcript_skips_analysis(self, pipeline, make_session, repo):
        session = await make_session(SessionState.COMPLETED)
        await repo.save_recording(SessionRecording(session_id=session.id, transcript="Hi."))

        result = await pipeline.finalize_recording(session.id, session.scheduled_time + timedelta(minutes=10))

        assert result.analyzed is False
        assert result.summary == "Session completed successfully"
        assert result.duration_seconds == 600

    @pytest.mark.asyncio
    async def test_long_transcript_analyzed(self, pipeline, make_session, repo):
        session = await make_session(SessionState.COMPLETED)
        await repo.save_recording(SessionRecording(session_id=session.id, transcript=VTT))

        result = await pipeline.finalize_recording(session.id, session.scheduled_time + timedelta(minutes=45))

        assert result.analyzed is True
        assert "confidence" in result.key_topics or "presenting" in result.key_topics
        assert (await repo.get_recording(session.id)).ai_summary == result.summary

    @pytest.mark.asyncio
    async def test_insight_failure_still_completes(self, repo, fsm, outbox, make_session):
        pipeline = RecordingPipeline(repo, fsm, outbox, BrokenInsights())
        session = await make_session(SessionState.COMPLETED)
        await repo.save_recording(SessionRecording(session_id=session.id, transcript=VTT))

        result = await pipeline.finalize_recording(session.id, session.scheduled_time + timedelta(minutes=5))

        assert result.analyzed is False
        recording = await repo.get_recording(session.id)
        assert recording.status == RecordingStatus.COMPLETED
        assert recording.ai_summary == "Session completed successfully"

    @pytest.mark.asyncio
    async def test_end_before_start_clamps_to_zero(self, pipeline, make_session):
        session = await make_session(SessionState.COMPLETED)
        result = await pipeline.finalize_recording(session.id, session.scheduled_time - timedelta(minutes=1))
        assert result.duration_seconds == 0
