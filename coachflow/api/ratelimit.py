"""Rate Limiting - Protect API endpoints from abuse.

Uses slowapi for FastAPI-compatible rate limiting. Room creation has a
stricter per-client limit because every miss costs a provider call.
"""

from __future__ import annotations

import hashlib

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from coachflow.config.settings import get_settings
from coachflow.observability.logging import get_logger

logger = get_logger(__name__)


def _get_client_identifier(request: Request) -> str:
    """Rate-limit key: hashed API key when present, else client IP."""
    api_key = request.headers.get("X-API-Key")
    if api_key:
        digest = hashlib.sha256(api_key.encode()).hexdigest()[:12]
        return f"key:{digest}"
    return get_remote_address(request)


# Default limits are computed at import time from settings
_settings = get_settings()

if _settings.rate_limit_enabled:
    limiter = Limiter(
        key_func=_get_client_identifier,
        default_limits=[
            f"{_settings.rate_limit_per_minute}/minute",
            f"{_settings.rate_limit_per_hour}/hour",
        ],
        headers_enabled=True,
        strategy="fixed-window",
        enabled=True,
    )
else:
    limiter = Limiter(
        key_func=_get_client_identifier,
        default_limits=[],
        enabled=False,
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render slowapi rejections in the standard error envelope."""
    logger.warning(
        "rate_limit_exceeded",
        client_id=_get_client_identifier(request),
        path=request.url.path,
        method=request.method,
        limit=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "reason": "rate-limit-exceeded",
            "error": "Rate limit exceeded. Please slow down.",
            "details": {"limit": str(exc.detail)},
        },
        headers={"Retry-After": "60"},
    )


# Per-endpoint limits
ROOM_CREATE_LIMIT = "10/minute"
BOOKING_LIMIT = "30/minute"
