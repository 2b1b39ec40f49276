"""Tests for Application Settings.

Tests environment-based configuration and validation.
"""

import pytest

from coachflow.config.constants import ORCH
from coachflow.config.settings import Settings, get_settings


class TestSettingsDefaults:

    @pytest.fixture(autouse=True)
    def clear_cache(self):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_api_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.api_host == "0.0.0.0"
        assert settings.api_port == 8081
        assert settings.environment == "development"

    def test_orchestration_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.session_lock_ttl_s == 600
        assert settings.video_provider_timeout_s == 10.0
        assert settings.fallback_video_host == "meet.videosdk.live"
        assert settings.room_lifetime_s == ORCH.ROOM_LIFETIME_S
        assert settings.join_token_lifetime_s == 24 * 60 * 60
        assert settings.outbox_max_attempts == 3
        assert settings.outbox_retention_days == 7
        assert settings.outbox_worker_enabled is True
        assert settings.webhook_tolerance_s == 300

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestRedisToggle:

    def test_memory_url_disables_redis(self):
        assert Settings(_env_file=None, redis_url="memory://").redis_enabled is False

    def test_redis_url_enables_redis(self):
        settings = Settings(_env_file=None, redis_url="redis://localhost:6379/0")
        assert settings.redis_enabled is True


class TestProductionValidation:

    def test_production_requires_api_key(self):
        with pytest.raises(ValueError, match="api_key"):
            Settings(
                _env_file=None,
                environment="production",
                auth_enabled=True,
                api_key=None,
                daily_webhook_secret="s",
            )

    def test_production_requires_webhook_secret(self):
        with pytest.raises(ValueError, match="daily_webhook_secret"):
            Settings(
                _env_file=None,
                environment="production",
                api_key="k",
                daily_webhook_secret=None,
            )

    def test_production_with_required_values(self):
        settings = Settings(
            _env_file=None,
            environment="production",
            api_key="k",
            daily_webhook_secret="s",
        )
        assert settings.environment == "production"

    def test_port_range_validated(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, api_port=80)


class TestConstants:

    def test_constants_are_frozen(self):
        with pytest.raises(AttributeError):
            ORCH.ROOM_MAX_PARTICIPANTS = 3  # type: ignore[misc]

    def test_redaction_markers(self):
        assert ORCH.REDACTION_MARKER_SILENCE == "[REDACTED - Transcription was paused]"
        assert ORCH.REDACTION_MARKER_REMOVE == "[CONTENT REMOVED FOR PRIVACY]"
