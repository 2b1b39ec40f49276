"""API Authentication - API key check for orchestration endpoints.

- API key validation via the configured header (X-API-Key by default)
- Skips auth in development mode when no key is configured
- Always skips auth for public paths (health, metrics, join link, webhooks)

Caller identity for credential issuance comes from ``X-User-Id``, set by
the gateway that authenticated the end user.
"""

import secrets

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from coachflow.api.public_paths import is_public_path
from coachflow.config.settings import get_settings
from coachflow.observability.logging import get_logger

logger = get_logger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

USER_ID_HEADER = "X-User-Id"


def _constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time to prevent timing attacks."""
    return secrets.compare_digest(a.encode(), b.encode())


async def verify_api_key(
    request: Request,
    api_key: str | None = Depends(api_key_header),
) -> None:
    """Verify API key from request header.

    Raises:
        HTTPException: 401 if authentication fails
    """
    settings = get_settings()

    if is_public_path(request.url.path):
        return

    if not settings.auth_enabled:
        return

    if settings.environment == "development" and not settings.api_key:
        logger.debug("auth_skipped", reason="development_no_key", path=request.url.path)
        return

    # Custom header names are read directly; the default goes through APIKeyHeader
    if settings.api_key_header != "X-API-Key":
        api_key = request.headers.get(settings.api_key_header)

    client_ip = request.client.host if request.client else "unknown"
    if not api_key:
        logger.warning("auth_failed", reason="missing_api_key", path=request.url.path, client_ip=client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not _constant_time_compare(api_key, settings.api_key or ""):
        logger.warning("auth_failed", reason="invalid_api_key", path=request.url.path, client_ip=client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    logger.debug("auth_success", path=request.url.path)


async def require_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Authenticated end-user id forwarded by the gateway.

    Raises:
        HTTPException: 401 if the header is absent
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {USER_ID_HEADER} header",
        )
    return x_user_id


def generate_api_key() -> str:
    """Generate a secure random API key.

    Returns:
        32-byte hex-encoded API key (64 characters)
    """
    return secrets.token_hex(32)
