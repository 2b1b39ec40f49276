"""Daily video provider - REST client over httpx.

Endpoints used:
- POST /rooms            room creation
- POST /meeting-tokens   room-scoped meeting tokens
- GET/POST /webhooks     webhook registration
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from coachflow.exceptions import VideoProviderError
from coachflow.observability.logging import get_logger
from coachflow.observability.metrics import observe_provider_latency
from coachflow.utils.async_timeout import AsyncTimeoutError, with_timeout
from coachflow.video.base import MeetingTokenRequest, RoomInfo, RoomSpec, VideoProvider

logger = get_logger(__name__)

# Events the meeting webhook subscribes to
WEBHOOK_EVENTS: tuple[str, ...] = (
    "meeting.started",
    "meeting.ended",
    "participant.joined",
    "participant.left",
    "recording.started",
    "recording.ready-to-download",
    "recording.error",
    "transcript.started",
    "transcript.ready-to-download",
    "transcript.error",
)


class DailyProvider(VideoProvider):
    """Primary video provider.

    Usage:
        provider = DailyProvider(api_key="...", base_url="https://api.daily.co/v1")
        room = await provider.create_room(RoomSpec.for_session(session_id, 4 * 3600))
        await provider.close()
    """

    name = "daily"

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.daily.co/v1",
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._client = client
        self._owns_client = client is None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    @property
    def supports_tokens(self) -> bool:
        return self.configured

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Issue an authenticated call and return the decoded JSON body.

        Raises:
            VideoProviderError: On missing credentials, timeout, transport
                failure or non-2xx status
        """
        if not self._api_key:
            raise VideoProviderError(self.name, "missing credentials")

        started = time.perf_counter()
        try:
            response = await with_timeout(
                self._http().request(
                    method,
                    self._url(path),
                    json=json,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                ),
                timeout_s=self._timeout_s,
                operation=f"daily {operation}",
            )
        except AsyncTimeoutError as e:
            raise VideoProviderError(self.name, e.message)
        except httpx.HTTPError as e:
            raise VideoProviderError(self.name, f"{type(e).__name__}: {e}")
        finally:
            observe_provider_latency(self.name, operation, time.perf_counter() - started)

        if response.status_code >= 400:
            raise VideoProviderError(
                self.name,
                response.text[:200] or response.reason_phrase,
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            raise VideoProviderError(self.name, "invalid JSON response", status=response.status_code)

    async def create_room(self, spec: RoomSpec) -> RoomInfo:
        body = {
            "name": spec.name,
            "privacy": "private",
            "properties": {
                "exp": int(spec.expires_at.timestamp()),
                "nbf": int(spec.not_before.timestamp()),
                "max_participants": spec.max_participants,
                "enable_recording": spec.enable_recording,
                "enable_screenshare": spec.enable_screenshare,
                "enable_chat": spec.enable_chat,
            },
        }
        data = await self._request("POST", "/rooms", "create_room", json=body)
        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise VideoProviderError(self.name, "room response missing url")
        return RoomInfo(name=data.get("name") or spec.name, url=url, provider=self.name, raw=data)

    async def create_meeting_token(self, request: MeetingTokenRequest) -> str:
        properties: dict[str, Any] = {
            "room_name": request.room_name,
            "user_name": request.user_name,
            "user_id": request.user_id,
            "is_owner": request.is_owner,
            "enable_recording": "cloud",
            "exp": int(request.expires_at.timestamp()),
        }
        if request.start_cloud_recording:
            properties["start_cloud_recording"] = True

        data = await self._request(
            "POST", "/meeting-tokens", "create_meeting_token", json={"properties": properties}
        )
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise VideoProviderError(self.name, "token response missing token")
        return token

    async def list_webhooks(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/webhooks", "list_webhooks")
        if isinstance(data, dict):
            return list(data.get("data") or [])
        return list(data or [])

    async def ensure_webhook(
        self,
        url: str,
        events: tuple[str, ...] = WEBHOOK_EVENTS,
    ) -> dict[str, Any]:
        """Register ``url`` for meeting events, updating an existing hook in place.

        Returns:
            ``{"webhookId", "created", "events", "url"}``
        """
        existing = next((hook for hook in await self.list_webhooks() if hook.get("url") == url), None)
        body = {"url": url, "eventTypes": list(events)}

        if existing is not None:
            hook_id = existing.get("uuid") or existing.get("id")
            data = await self._request("POST", f"/webhooks/{hook_id}", "update_webhook", json=body)
            logger.info("webhook_updated", webhook_id=hook_id, url=url)
            return {"webhookId": data.get("uuid") or data.get("id") or hook_id, "created": False,
                    "events": list(events), "url": url}

        body["retryType"] = "exponential"
        data = await self._request("POST", "/webhooks", "create_webhook", json=body)
        hook_id = data.get("uuid") or data.get("id")
        logger.info("webhook_created", webhook_id=hook_id, url=url)
        return {"webhookId": hook_id, "created": True, "events": list(events), "url": url}

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
