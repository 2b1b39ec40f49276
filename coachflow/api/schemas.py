"""Request bodies for the orchestration routes (camelCase on the wire)."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UpdateStateRequest(CamelModel):
    session_id: str
    new_state: str
    lock_holder_id: str | None = None
    reason: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class EnsureRoomRequest(CamelModel):
    idempotency_key: str | None = None


class RespondRequest(CamelModel):
    action: Literal["accept", "decline"]


class InstantSessionRequest(CamelModel):
    coach_id: str
    user_goal: str | None = None
    client_bio: str | None = None


class BookingRequest(BaseModel):
    """``{action, ...payload}``; the payload is validated per action."""

    model_config = ConfigDict(extra="allow")

    action: str


class ChunkRequest(CamelModel):
    text: str
    start: float | None = Field(default=None, ge=0)
    end: float | None = Field(default=None, ge=0)


class PauseRequest(CamelModel):
    at: float | None = Field(default=None, ge=0)


class FinalizeRequest(CamelModel):
    end_time: datetime | None = None
    client_notes: str | None = None
    coach_notes: str | None = None
    goals: list[Any] | None = None


class ResolveJoinRequest(CamelModel):
    token: str = Field(min_length=1)


class WebhookSetupRequest(CamelModel):
    webhook_url: str = Field(min_length=1)
