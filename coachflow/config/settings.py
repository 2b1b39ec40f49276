"""Application Settings - Environment-based configuration.

Uses Pydantic Settings for validation and type coercion.

Required variables fail startup if missing.
Conditional variables are required only when their parent feature is enabled.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from coachflow.config.constants import ORCH


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API bind host")
    api_port: int = Field(default=8081, ge=1024, le=65535, description="API port")
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment name"
    )
    website_url: str = Field(
        default="http://localhost:5173",
        description="Front-end base URL used for join-link redirects",
    )

    # Authentication
    api_key: str | None = Field(
        default=None,
        description="API key for authentication (required in production)",
    )
    api_key_header: str = Field(
        default="X-API-Key",
        description="Header name for API key",
    )
    auth_enabled: bool = Field(
        default=True,
        description="Enable API authentication (auto-disabled in development if no key)",
    )

    # CORS
    cors_origins: list[str] = Field(
        default=["*"], description="Allowed CORS origins"
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable request rate limiting")
    rate_limit_per_minute: int = Field(default=120, ge=1, description="Requests per minute per client")
    rate_limit_per_hour: int = Field(default=2000, ge=1, description="Requests per hour per client")

    # Capacity
    max_sessions_limit: int = Field(
        default=100, ge=1, le=10000, description="Maximum concurrently active sessions"
    )
    max_db_connections: int = Field(
        default=60, ge=1, description="Maximum database connections available to sessions"
    )
    db_connections_per_session: float = Field(
        default=0.5, ge=0, description="Connections attributed to each active session"
    )

    # Locking
    session_lock_ttl_s: int = Field(
        default=600, ge=10, le=86400, description="Age after which session lock metadata is reclaimable"
    )
    advisory_lock_ttl_s: int = Field(
        default=60, ge=1, le=3600, description="Crash-reclaim TTL for advisory locks in Redis"
    )
    redis_url: str = Field(
        default="memory://",
        description="Redis URL for advisory locks (memory:// uses the in-process backend)",
    )

    # Primary video provider (Daily)
    daily_api_key: str | None = Field(default=None, description="Daily REST API key")
    daily_api_url: str = Field(
        default="https://api.daily.co/v1", description="Daily REST API base URL"
    )
    daily_webhook_secret: str | None = Field(
        default=None, description="Shared secret for webhook HMAC verification"
    )
    webhook_tolerance_s: int = Field(
        default=300, ge=1, description="Max clock skew accepted for signed webhook timestamps"
    )

    # Fallback video provider
    fallback_video_host: str = Field(
        default="meet.videosdk.live", description="Host used for degraded-mode room URLs"
    )
    video_provider_timeout_s: float = Field(
        default=10.0, gt=0, le=60, description="Timeout for provider HTTP calls"
    )
    room_lifetime_s: int = Field(
        default=ORCH.ROOM_LIFETIME_S, ge=300, description="Room expiry offset from creation"
    )
    meeting_token_lifetime_s: int = Field(
        default=ORCH.MEETING_TOKEN_LIFETIME_S, ge=300, description="Meeting token lifetime"
    )

    # Join links
    join_token_lifetime_s: int = Field(
        default=ORCH.JOIN_TOKEN_LIFETIME_S, ge=60, description="One-time join token lifetime"
    )

    # Outbox
    outbox_max_attempts: int = Field(default=3, ge=1, le=20, description="Delivery attempts per item")
    outbox_retention_days: int = Field(default=7, ge=1, description="Retention for sent items")
    outbox_poll_interval_s: float = Field(default=30.0, gt=0, description="Worker poll interval")
    outbox_worker_enabled: bool = Field(
        default=True, description="Run the outbox drain loop inside the API process"
    )
    outbox_delivery_url: str | None = Field(
        default=None, description="Endpoint receiving outbox items (log-only when unset)"
    )

    # Observability
    metrics_enabled: bool = Field(default=True, description="Enable Prometheus metrics")

    def model_post_init(self, __context) -> None:
        """Validate conditional requirements after model creation."""
        if self.environment == "production" and self.auth_enabled and not self.api_key:
            raise ValueError(
                "api_key is required when auth_enabled=true in production environment"
            )

        if self.environment == "production" and not self.daily_webhook_secret:
            raise ValueError(
                "daily_webhook_secret is required in production environment"
            )

    @property
    def redis_enabled(self) -> bool:
        """Whether advisory locks are backed by Redis."""
        return bool(self.redis_url) and self.redis_url.strip().lower() != "memory://"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
