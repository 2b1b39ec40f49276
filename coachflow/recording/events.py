"""Webhook payload schemas.

Provider bodies are validated here and projected into the few fields the
pipeline consumes; unknown keys are ignored.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class WebhookEnvelope(_Payload):
    """Outer ``{type, data}`` shape shared by both webhook sources."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class TranscriptionCompleted(_Payload):
    session_id: str
    transcript_url: str
    recording_id: str | None = None
    duration_seconds: int = 0


class MeetingData(_Payload):
    room_name: str
    room_url: str | None = None
    meeting_id: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration: float | None = None


class ParticipantInfo(_Payload):
    user_id: str | None = None
    user_name: str | None = None
    joined_at: datetime | None = None
    left_at: datetime | None = None


class ParticipantData(_Payload):
    room_name: str
    room_url: str | None = None
    participant: ParticipantInfo = Field(default_factory=ParticipantInfo)


class MediaData(_Payload):
    """Recording and transcript lifecycle events."""

    room_name: str
    recording_id: str | None = None
    transcript_id: str | None = None
    download_url: str | None = None
    error: str | None = None
    duration: float | None = None
