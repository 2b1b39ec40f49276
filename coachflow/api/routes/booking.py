"""Booking API Routes - the booking bridge behind a single action endpoint."""

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from coachflow.api.auth import verify_api_key
from coachflow.api.deps import container_dependency
from coachflow.api.ratelimit import BOOKING_LIMIT, limiter
from coachflow.api.schemas import BookingRequest
from coachflow.container import ServiceContainer
from coachflow.exceptions import CapacityExceededError

router = APIRouter(
    prefix="/booking",
    tags=["booking"],
    dependencies=[Depends(verify_api_key)],
)


@router.post("")
@limiter.limit(BOOKING_LIMIT)
async def book(
    request: Request,
    response: Response,
    body: BookingRequest,
    container: ServiceContainer = Depends(container_dependency),
) -> dict[str, Any]:
    """Run a bridge action.

    A capacity rejection answers 503 with ``{success: false, reason:
    "capacity"}`` so the front-end can show "system busy" rather than a
    generic error page.
    """
    payload = body.model_extra or {}
    result = await container.booking.book_from_request(body.action, payload)
    if result.reason == CapacityExceededError.reason:
        response.status_code = CapacityExceededError.status_code
    return result.to_dict()
