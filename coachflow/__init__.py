"""CoachFlow - live-coaching video session orchestrator."""

__version__ = "1.0.0"

# Export exception hierarchy for easy importing
from coachflow.exceptions import (
    AuthError,
    CapacityExceededError,
    CoachFlowError,
    ConfigurationError,
    InvalidTransitionError,
    LockUnavailableError,
    MissingConfigError,
    RateLimitedError,
    RecordNotFoundError,
    RoomNotReadyError,
    SessionError,
    SessionNotFoundError,
    TokenExpiredOrUsedError,
    UnauthorizedError,
    ValidationError,
    VideoProviderError,
    VideoProviderUnavailableError,
    WebhookSignatureError,
)

__all__ = [
    "__version__",
    "AuthError",
    "CapacityExceededError",
    "CoachFlowError",
    "ConfigurationError",
    "InvalidTransitionError",
    "LockUnavailableError",
    "MissingConfigError",
    "RateLimitedError",
    "RecordNotFoundError",
    "RoomNotReadyError",
    "SessionError",
    "SessionNotFoundError",
    "TokenExpiredOrUsedError",
    "UnauthorizedError",
    "ValidationError",
    "VideoProviderError",
    "VideoProviderUnavailableError",
    "WebhookSignatureError",
]
