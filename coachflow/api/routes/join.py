"""Join Link Routes - one-time email links opened before authentication.

``GET /join?token=`` redeems the token and redirects the browser to the
session portal; every failure redirects to the typed error page instead
of answering JSON, since the caller is a browser following an email link.
"""

from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from coachflow.api.deps import container_dependency
from coachflow.api.schemas import ResolveJoinRequest
from coachflow.container import ServiceContainer
from coachflow.exceptions import CoachFlowError
from coachflow.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/join", tags=["join"])


def _error_redirect(website_url: str, reason: str) -> RedirectResponse:
    return RedirectResponse(
        f"{website_url.rstrip('/')}/session-error?{urlencode({'reason': reason})}",
        status_code=302,
    )


@router.get("")
async def join(
    token: str | None = None,
    container: ServiceContainer = Depends(container_dependency),
) -> RedirectResponse:
    website_url = container.settings.website_url
    if not token:
        return _error_redirect(website_url, "missing-token")

    try:
        redemption = await container.issuer.redeem_join_token(token, container.provisioner)
    except CoachFlowError as e:
        logger.warning("join_link_failed", reason=e.reason, error=e.message)
        return _error_redirect(website_url, e.reason)
    except Exception as exc:
        logger.error("join_link_error", error=str(exc), exc_info=exc)
        return _error_redirect(website_url, "database-error")

    return RedirectResponse(
        f"{website_url.rstrip('/')}/session-portal/{redemption.session_id}",
        status_code=302,
    )


@router.post("/resolve")
async def resolve(
    body: ResolveJoinRequest,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    """Read-only token lookup returning non-sensitive session fields."""
    session = await container.issuer.resolve_join_token(body.token)
    return {"success": True, "session": session.public_view()}
