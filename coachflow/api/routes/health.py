"""Health check endpoints.

- /healthz: Liveness probe (is the process alive?)
- /readyz: Readiness probe (is the service ready to accept traffic?)
- /health: Combined view including component status

Probes are exempt from rate limiting.
"""

from typing import Any

from fastapi import APIRouter, Response, status

from coachflow.api.ratelimit import limiter

router = APIRouter(tags=["health"])


_ready: bool = False
_components: dict[str, bool] = {
    "repository": False,
    "lock_backend": False,
    "video_provider": False,
}

# The service can run degraded on the fallback provider
CRITICAL_COMPONENTS = ("repository", "lock_backend")


def set_ready(ready: bool) -> None:
    """Set overall readiness status."""
    global _ready
    _ready = ready


def set_component_health(component: str, healthy: bool) -> None:
    """Set health status for a specific component."""
    if component in _components:
        _components[component] = healthy


def get_component_health() -> dict[str, bool]:
    return _components.copy()


def _critical_ready() -> bool:
    return all(_components.get(c, False) for c in CRITICAL_COMPONENTS)


@router.get("/healthz", response_model=dict[str, str])
@limiter.exempt
async def healthz() -> dict[str, str]:
    """Liveness probe. Returns 200 if the process is alive."""
    return {"status": "alive"}


@router.get("/readyz")
@limiter.exempt
async def readyz(response: Response) -> dict[str, Any]:
    """Readiness probe.

    Returns 503 if any critical component is unhealthy.
    """
    if _ready and _critical_ready():
        return {"status": "ready", "components": _components}

    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "not_ready", "components": _components}


@router.get("/health")
@limiter.exempt
async def health(response: Response) -> dict[str, Any]:
    """Combined liveness and readiness information."""
    healthy = _ready and _critical_ready()
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "success": healthy,
        "status": "healthy" if healthy else "degraded",
        "ready": _ready,
        "components": _components,
    }
