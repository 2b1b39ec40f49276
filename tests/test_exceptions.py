"""Tests for Exception Hierarchy.

Tests cover:
- CoachFlowError base class
- Reason codes and HTTP statuses
- Session, capacity, provider and auth errors
"""

import pytest

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


class TestCoachFlowError:
    """Tests for CoachFlowError base class."""

    def test_basic_creation(self):
        error = CoachFlowError("Something went wrong")

        assert error.message == "Something went wrong"
        assert error.details == {}
        assert error.recoverable is False
        assert error.reason == "server-error"
        assert error.status_code == 500

    def test_str_includes_details(self):
        error = CoachFlowError("Failed", details={"key": "value"})
        assert "Failed" in str(error)
        assert "key" in str(error)

    def test_to_dict(self):
        error = CoachFlowError("Test error", details={"foo": "bar"}, recoverable=True)
        result = error.to_dict()

        assert result == {
            "type": "CoachFlowError",
            "reason": "server-error",
            "message": "Test error",
            "details": {"foo": "bar"},
            "recoverable": True,
        }

    def test_is_exception(self):
        with pytest.raises(CoachFlowError):
            raise CoachFlowError("Test")


class TestSessionErrors:

    def test_session_not_found(self):
        error = SessionNotFoundError("sess-123")

        assert isinstance(error, SessionError)
        assert error.session_id == "sess-123"
        assert error.reason == "session-not-found"
        assert error.status_code == 404
        assert "sess-123" in error.message

    def test_session_not_found_without_id(self):
        error = SessionNotFoundError()
        assert error.message == "Session not found"

    def test_lock_unavailable_is_recoverable(self):
        error = LockUnavailableError("session_state:abc", session_id="abc")

        assert error.reason == "session_busy"
        assert error.status_code == 409
        assert error.recoverable is True
        assert error.details["lock_key"] == "session_state:abc"

    def test_invalid_transition(self):
        error = InvalidTransitionError("abc", "completed", "ready")

        assert error.reason == "invalid_transition"
        assert error.status_code == 409
        assert error.current_state == "completed"
        assert error.target_state == "ready"
        assert error.recoverable is False

    def test_room_not_ready(self):
        error = RoomNotReadyError("abc")
        assert error.reason == "room-not-ready"
        assert error.recoverable is True


class TestRecordNotFound:

    def test_reason_derived_from_kind(self):
        error = RecordNotFoundError("guest-session", "g-1")

        assert error.reason == "guest-session-not-found"
        assert error.status_code == 404
        assert error.message == "Guest session not found: g-1"
        assert error.details == {"id": "g-1"}

    def test_reason_is_per_instance(self):
        RecordNotFoundError("coach")
        assert RecordNotFoundError("user-response").reason == "user-response-not-found"


class TestCapacityAndProviderErrors:

    def test_capacity_exceeded(self):
        error = CapacityExceededError(100, 100)

        assert error.reason == "capacity"
        assert error.status_code == 503
        assert error.recoverable is True
        assert error.details == {"active_sessions": 100, "max_sessions": 100}

    def test_provider_error(self):
        error = VideoProviderError("daily", "timeout", status=504)

        assert error.provider == "daily"
        assert error.details["status"] == 504
        assert error.recoverable is True

    def test_provider_unavailable_is_fatal(self):
        error = VideoProviderUnavailableError("abc", ["daily failed", "fallback failed"])

        assert isinstance(error, VideoProviderError)
        assert error.reason == "video-provider-down"
        assert error.status_code == 503
        assert error.recoverable is False
        assert error.details["session_id"] == "abc"
        assert "daily failed" in error.message


class TestAuthErrors:

    def test_unauthorized(self):
        error = UnauthorizedError()
        assert isinstance(error, AuthError)
        assert error.reason == "unauthorized"
        assert error.status_code == 403

    def test_webhook_signature(self):
        error = WebhookSignatureError("signature mismatch")
        assert error.reason == "invalid_signature"
        assert error.status_code == 401
        assert error.details["detail"] == "signature mismatch"

    @pytest.mark.parametrize(
        "reason,message",
        [
            (TokenExpiredOrUsedError.EXPIRED, "Token expired"),
            (TokenExpiredOrUsedError.USED, "Token already used"),
        ],
    )
    def test_token_reasons_are_distinct(self, reason, message):
        error = TokenExpiredOrUsedError(reason, "abc")
        assert error.reason == reason
        assert error.message == message

    def test_rate_limited(self):
        error = RateLimitedError(3, 60)
        assert error.reason == "rate-limit-exceeded"
        assert error.status_code == 429


class TestConfigurationErrors:

    def test_missing_config(self):
        error = MissingConfigError("DAILY_API_KEY", "Needed for room creation")

        assert isinstance(error, ConfigurationError)
        assert "DAILY_API_KEY" in error.message
        assert "Needed for room creation" in error.message
        assert error.details["config_key"] == "DAILY_API_KEY"

    def test_validation_error_field(self):
        error = ValidationError("Missing sessionId", field="sessionId")
        assert error.status_code == 400
        assert error.reason == "invalid_input"
        assert error.details == {"field": "sessionId"}
