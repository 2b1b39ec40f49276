"""Webhook Routes - provider callbacks authenticated by HMAC signature.

Signatures are checked against the raw body before the payload is
parsed. Unknown event types are acknowledged so the provider does not
retry them.
"""

import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PayloadError

from coachflow.api.auth import verify_api_key
from coachflow.api.deps import container_dependency
from coachflow.api.schemas import WebhookSetupRequest
from coachflow.config.constants import ORCH
from coachflow.container import ServiceContainer
from coachflow.exceptions import CoachFlowError, MissingConfigError, ValidationError
from coachflow.observability.logging import get_logger
from coachflow.observability.metrics import record_webhook
from coachflow.recording.events import WebhookEnvelope
from coachflow.recording.signatures import verify_signature, verify_timestamped_signature

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(verify_api_key)],
)


def _parse_envelope(body: bytes) -> WebhookEnvelope:
    try:
        return WebhookEnvelope.model_validate(json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError, PayloadError):
        raise ValidationError("Webhook body is not a valid event envelope", field="body")


@router.post("/transcription")
async def transcription_webhook(
    request: Request,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    body = await request.body()
    try:
        verify_signature(
            container.settings.daily_webhook_secret,
            body,
            request.headers.get(ORCH.TRANSCRIPTION_SIGNATURE_HEADER),
        )
        envelope = _parse_envelope(body)
        result = await container.recordings.handle_transcription_event(envelope)
    except CoachFlowError as e:
        record_webhook("transcription", e.reason)
        raise
    record_webhook("transcription", result.get("outcome", "processed"))
    return {"success": True, **result}


@router.post("/daily")
async def daily_webhook(
    request: Request,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    body = await request.body()
    try:
        verify_timestamped_signature(
            container.settings.daily_webhook_secret,
            body,
            request.headers.get(ORCH.DAILY_SIGNATURE_HEADER),
            request.headers.get(ORCH.DAILY_TIMESTAMP_HEADER),
            tolerance_s=container.settings.webhook_tolerance_s,
        )
        envelope = _parse_envelope(body)
        result = await container.recordings.handle_daily_event(envelope)
    except CoachFlowError as e:
        record_webhook("daily", e.reason)
        raise
    record_webhook("daily", result.get("outcome", "processed"))
    logger.info("daily_webhook_handled", event_type=envelope.type, outcome=result.get("outcome"))
    return {"success": True, **result}


@admin_router.post("/webhooks/setup")
async def setup_webhooks(
    body: WebhookSetupRequest,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    """Register the meeting webhook with the primary provider if missing."""
    if not container.settings.daily_api_key:
        raise MissingConfigError("DAILY_API_KEY", "Needed to register provider webhooks")
    result = await container.daily.ensure_webhook(body.webhook_url)
    return {"success": True, **result}
