"""Public Paths Registry - endpoints that bypass API-key authentication.

Usage:
    from coachflow.api.public_paths import is_public_path

Categories:
    - HEALTH_PATHS: Kubernetes probes
    - METRICS_PATHS: Prometheus scraping
    - JOIN_PATHS: one-time join links opened from email
    - WEBHOOK_PREFIX: provider webhooks, authenticated by signature instead
"""

from typing import Final

HEALTH_PATHS: Final[frozenset[str]] = frozenset({
    "/health",
    "/healthz",
    "/readyz",
})

METRICS_PATHS: Final[frozenset[str]] = frozenset({
    "/metrics",
})

JOIN_PATHS: Final[frozenset[str]] = frozenset({
    "/join",
    "/join/resolve",
})

WEBHOOK_PREFIX: Final[str] = "/webhooks/"

# All exact paths that bypass authentication
PUBLIC_PATHS: Final[frozenset[str]] = HEALTH_PATHS | METRICS_PATHS | JOIN_PATHS


def is_webhook_path(path: str) -> bool:
    return path.startswith(WEBHOOK_PREFIX)


def is_public_path(path: str) -> bool:
    """Check if path is publicly accessible (no API key required).

    Example:
        >>> is_public_path("/join")
        True
        >>> is_public_path("/webhooks/daily")
        True
        >>> is_public_path("/sessions/state")
        False
    """
    return path in PUBLIC_PATHS or is_webhook_path(path)

