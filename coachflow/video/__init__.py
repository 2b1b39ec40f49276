"""Video room providers and provisioning."""

from coachflow.video.base import MeetingTokenRequest, RoomInfo, RoomSpec, VideoProvider
from coachflow.video.daily import DailyProvider
from coachflow.video.fallback import FallbackProvider
from coachflow.video.provisioner import RoomResult, VideoRoomProvisioner

__all__ = [
    "DailyProvider",
    "FallbackProvider",
    "MeetingTokenRequest",
    "RoomInfo",
    "RoomResult",
    "RoomSpec",
    "VideoProvider",
    "VideoRoomProvisioner",
]
