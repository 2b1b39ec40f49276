"""Structured Logging - JSON logs with correlation.

Provides structured logging for:
- Session state transitions and lock contention
- Video room provisioning (including degraded fallback mode)
- Webhook deliveries and transcript redaction
- Best-effort side calls that failed without failing the request

All session-scoped logs include session_id for correlation.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; else human-readable
    """
    level = "WARNING" if level.upper() == "WARN" else level.upper()

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Also configure standard logging to use structlog
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)


# -----------------------------------------------------------------------------
# Event-specific logging functions
# -----------------------------------------------------------------------------


class SessionLogger:
    """Logger for session lifecycle events."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._log = get_logger("session").bind(session_id=session_id)

    def state_change(
        self,
        old_state: str,
        new_state: str,
        reason: str,
        locked_by: str,
    ) -> None:
        """Log an accepted state transition."""
        self._log.info(
            "state_change",
            event_type="session.state_change",
            old_state=old_state,
            new_state=new_state,
            reason=reason,
            locked_by=locked_by,
        )

    def transition_rejected(self, current_state: str, target_state: str) -> None:
        """Log a transition refused by the transition table."""
        self._log.warning(
            "transition_rejected",
            event_type="session.transition_rejected",
            current_state=current_state,
            target_state=target_state,
        )

    def lock_busy(self, lock_key: str) -> None:
        """Log lock contention."""
        self._log.info(
            "lock_busy",
            event_type="session.lock_busy",
            lock_key=lock_key,
        )


class RoomLogger:
    """Logger for video room provisioning events."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._log = get_logger("video_room").bind(session_id=session_id)

    def room_reused(self, room_name: str) -> None:
        """Log idempotent short-circuit."""
        self._log.info(
            "room_reused",
            event_type="room.idempotent",
            room_name=room_name,
        )

    def room_created(self, provider: str, room_name: str) -> None:
        """Log successful room creation."""
        self._log.info(
            "room_created",
            event_type="room.created",
            provider=provider,
            room_name=room_name,
        )

    def provider_failed(self, provider: str, error: str) -> None:
        """Log a provider failure before fallback."""
        self._log.warning(
            "video_provider_failed",
            event_type="room.provider_failed",
            provider=provider,
            error=error,
        )

    def degraded_mode(self, provider: str, room_url: str) -> None:
        """Log use of the fallback provider."""
        self._log.warning(
            "video_provider_degraded",
            event_type="room.degraded",
            provider=provider,
            room_url=room_url,
        )


class SideEffectLogger:
    """Logger for best-effort side calls (emails, analytics fan-out)."""

    def __init__(self, component: str) -> None:
        self._log = get_logger("side_effect").bind(component=component)

    def failed(self, action: str, error: str, **context: Any) -> None:
        """Log a failed best-effort step; the primary operation continues."""
        self._log.warning(
            "side_effect_failed",
            event_type="side_effect.failed",
            action=action,
            error=error,
            **context,
        )


# Initialize default logging configuration
def init_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Initialize logging with defaults.

    Call this once at application startup.
    """
    configure_logging(level=level, json_format=json_format)
