"""Fallback video provider - deterministic room URLs, no API call.

Degraded mode: rooms are not access-scoped and no meeting tokens exist.
"""

from coachflow.exceptions import VideoProviderError
from coachflow.video.base import RoomInfo, RoomSpec, VideoProvider


class FallbackProvider(VideoProvider):
    """Builds ``https://<host>/<roomName>`` for a fallback room name."""

    name = "videosdk"

    def __init__(self, host: str | None) -> None:
        self._host = (host or "").strip().strip("/")

    async def create_room(self, spec: RoomSpec) -> RoomInfo:
        if not self._host:
            raise VideoProviderError(self.name, "fallback host not configured")
        # session-{id}-{ms} -> fallback-room-{id}-{ms}
        room_name = "fallback-room-" + spec.name.removeprefix("session-")
        return RoomInfo(name=room_name, url=f"https://{self._host}/{room_name}", provider=self.name)
