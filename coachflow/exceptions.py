"""CoachFlow Exception Hierarchy.

Every orchestration failure maps onto one of these classes. Each carries a
machine-readable ``reason`` code and the HTTP status the API layer answers
with, so handlers never need to translate errors by hand.

Hierarchy:
    CoachFlowError (base)
    ├── ValidationError
    ├── RecordNotFoundError
    ├── SessionError
    │   ├── SessionNotFoundError
    │   ├── LockUnavailableError
    │   ├── InvalidTransitionError
    │   └── RoomNotReadyError
    ├── CapacityExceededError
    ├── VideoProviderError
    │   └── VideoProviderUnavailableError
    ├── AuthError
    │   ├── UnauthorizedError
    │   └── WebhookSignatureError
    ├── TokenExpiredOrUsedError
    ├── RateLimitedError
    └── ConfigurationError
        └── MissingConfigError
"""

from typing import Any


class CoachFlowError(Exception):
    """Base exception for all CoachFlow errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the caller may retry later
        reason: Machine-readable reason code
        status_code: HTTP status used by the API envelope
    """

    reason: str = "server-error"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "reason": self.reason,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ValidationError(CoachFlowError):
    """Raised when a request is missing required input."""

    reason = "invalid_input"
    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message=message,
            details={"field": field} if field else None,
            recoverable=False,
        )


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(CoachFlowError):
    """Base exception for session-related errors."""

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        details = details or {}
        if session_id:
            details["session_id"] = session_id
        super().__init__(message, details, recoverable)
        self.session_id = session_id


class SessionNotFoundError(SessionError):
    """Raised when a session cannot be found."""

    reason = "session-not-found"
    status_code = 404

    def __init__(self, session_id: str | None = None) -> None:
        super().__init__(
            message=f"Session not found: {session_id}" if session_id else "Session not found",
            session_id=session_id,
            recoverable=False,
        )


class LockUnavailableError(SessionError):
    """Raised when another process holds the session or room lock."""

    reason = "session_busy"
    status_code = 409

    def __init__(self, lock_key: str, session_id: str | None = None) -> None:
        super().__init__(
            message="Session is being modified by another process",
            session_id=session_id,
            details={"lock_key": lock_key},
            recoverable=True,
        )
        self.lock_key = lock_key


class InvalidTransitionError(SessionError):
    """Raised when a requested state change is not allowed."""

    reason = "invalid_transition"
    status_code = 409

    def __init__(
        self,
        session_id: str | None,
        current_state: str,
        target_state: str,
    ) -> None:
        super().__init__(
            message=f"Invalid transition: {current_state} → {target_state}",
            session_id=session_id,
            details={"current_state": current_state, "target_state": target_state},
            recoverable=False,
        )
        self.current_state = current_state
        self.target_state = target_state


class RecordNotFoundError(CoachFlowError):
    """Raised when a coach, guest session or response cannot be found."""

    status_code = 404

    def __init__(self, kind: str, record_id: str | None = None) -> None:
        label = kind.replace("-", " ").capitalize()
        super().__init__(
            message=f"{label} not found: {record_id}" if record_id else f"{label} not found",
            details={"id": record_id} if record_id else None,
            recoverable=False,
        )
        self.reason = f"{kind}-not-found"


class RoomNotReadyError(SessionError):
    """Raised when a credential is requested before the room exists."""

    reason = "room-not-ready"
    status_code = 409

    def __init__(self, session_id: str) -> None:
        super().__init__(
            message="Video room not found for this session",
            session_id=session_id,
            recoverable=True,
        )


# =============================================================================
# Capacity / Provider Errors
# =============================================================================


class CapacityExceededError(CoachFlowError):
    """Raised when the system is at its session or connection ceiling."""

    reason = "capacity"
    status_code = 503

    def __init__(self, active_sessions: int, max_sessions: int) -> None:
        super().__init__(
            message="System at capacity - cannot create new sessions",
            details={
                "active_sessions": active_sessions,
                "max_sessions": max_sessions,
            },
            recoverable=True,  # Can retry when a session ends
        )


class VideoProviderError(CoachFlowError):
    """Raised when a single video provider call fails."""

    reason = "video-provider-error"
    status_code = 502

    def __init__(self, provider: str, reason: str, status: int | None = None) -> None:
        details: dict[str, Any] = {"provider": provider, "reason": reason}
        if status is not None:
            details["status"] = status
        super().__init__(
            message=f"Video provider {provider} failed: {reason}",
            details=details,
            recoverable=True,
        )
        self.provider = provider


class VideoProviderUnavailableError(VideoProviderError):
    """Raised when both primary and fallback providers failed."""

    reason = "video-provider-down"
    status_code = 503

    def __init__(self, session_id: str, errors: list[str]) -> None:
        super().__init__(provider="all", reason="; ".join(errors) or "no provider available")
        self.details["session_id"] = session_id
        self.recoverable = False


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(CoachFlowError):
    """Base exception for authentication/authorisation failures."""

    reason = "unauthorized"
    status_code = 403


class UnauthorizedError(AuthError):
    """Raised when the caller is not a party to the session."""

    def __init__(self, message: str = "You are not authorized to join this session") -> None:
        super().__init__(message=message, recoverable=False)


class WebhookSignatureError(AuthError):
    """Raised when a webhook signature is missing or does not match."""

    reason = "invalid_signature"
    status_code = 401

    def __init__(self, detail: str) -> None:
        super().__init__(
            message="Unauthorized",
            details={"detail": detail},
            recoverable=False,
        )


class TokenExpiredOrUsedError(CoachFlowError):
    """Raised when a one-time join token is expired or already consumed."""

    status_code = 403

    EXPIRED = "token-expired"
    USED = "token-already-used"

    def __init__(self, reason: str, session_id: str | None = None) -> None:
        super().__init__(
            message="Token expired" if reason == self.EXPIRED else "Token already used",
            details={"session_id": session_id} if session_id else None,
            recoverable=False,
        )
        self.reason = reason


class RateLimitedError(CoachFlowError):
    """Raised when join-link attempts exceed the per-session window."""

    reason = "rate-limit-exceeded"
    status_code = 429

    def __init__(self, attempts: int, window_s: int) -> None:
        super().__init__(
            message="Too many join attempts",
            details={"attempts": attempts, "window_s": window_s},
            recoverable=True,
        )


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(CoachFlowError):
    """Base exception for configuration-related errors."""

    pass


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration is missing."""

    def __init__(self, config_key: str, description: str | None = None) -> None:
        message = f"Missing required configuration: {config_key}"
        if description:
            message += f" - {description}"
        super().__init__(
            message=message,
            details={"config_key": config_key},
            recoverable=False,
        )
