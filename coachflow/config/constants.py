"""Orchestration Constants - Contract values shared across components.

These values define the lock key namespaces, redaction markers and
provider header names that every component must agree on.
"""

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class OrchestrationConstants:
    """Immutable orchestration contract values.

    Durations in seconds unless otherwise noted.
    """

    # Advisory lock namespaces
    LOCK_SESSION_STATE: Final[str] = "session_state"
    LOCK_VIDEO_ROOM: Final[str] = "video_room_create"
    LOCK_JOIN_TOKEN: Final[str] = "join_token"
    LOCK_ID_MODULUS: Final[int] = 2147483647  # 31-bit non-negative lock ids

    # Video rooms
    ROOM_MAX_PARTICIPANTS: Final[int] = 2  # 1:1 coaching
    ROOM_LIFETIME_S: Final[int] = 4 * 60 * 60
    MEETING_TOKEN_LIFETIME_S: Final[int] = 4 * 60 * 60
    PROVIDER_PRIMARY: Final[str] = "daily"
    PROVIDER_FALLBACK: Final[str] = "videosdk"

    # One-time join tokens
    JOIN_TOKEN_LIFETIME_S: Final[int] = 24 * 60 * 60
    JOIN_RATE_LIMIT_ATTEMPTS: Final[int] = 3
    JOIN_RATE_LIMIT_WINDOW_S: Final[int] = 60

    # Instant connect defaults
    INSTANT_LEAD_TIME_S: Final[int] = 15 * 60
    INSTANT_DURATION_MIN: Final[int] = 15
    INSTANT_PRICE_AMOUNT: Final[float] = 25.0
    INSTANT_PRICE_CURRENCY: Final[str] = "GBP"
    INSTANT_COIN_COST: Final[int] = 1

    # Booking defaults
    DEFAULT_SESSION_DURATION_MIN: Final[int] = 30
    DEFAULT_BOOKING_LEAD_TIME_S: Final[int] = 24 * 60 * 60

    # Transcript redaction
    REDACTION_MARKER_SILENCE: Final[str] = "[REDACTED - Transcription was paused]"
    REDACTION_MARKER_REMOVE: Final[str] = "[CONTENT REMOVED FOR PRIVACY]"
    MIN_TRANSCRIPT_FOR_ANALYSIS: Final[int] = 50

    # Webhooks
    TRANSCRIPTION_SIGNATURE_HEADER: Final[str] = "x-provider-signature"
    DAILY_SIGNATURE_HEADER: Final[str] = "x-webhook-signature"
    DAILY_TIMESTAMP_HEADER: Final[str] = "x-webhook-timestamp"
    SIGNATURE_PREFIX: Final[str] = "sha256="


# Singleton instance for import convenience
ORCH = OrchestrationConstants()
