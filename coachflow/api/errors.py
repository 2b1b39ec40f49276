"""Error envelopes - every failure answers ``{success: false, reason, error, details}``."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from coachflow.api.middleware.request_id import get_request_id
from coachflow.api.ratelimit import rate_limit_exceeded_handler
from coachflow.exceptions import CoachFlowError
from coachflow.observability.logging import get_logger
from coachflow.observability.metrics import record_error

logger = get_logger(__name__)


def error_body(reason: str, error: str, details: dict | None = None) -> dict:
    return {"success": False, "reason": reason, "error": error, "details": details or {}}


async def coachflow_error_handler(request: Request, exc: CoachFlowError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 or exc.recoverable else logger.error
    log(
        "request_failed",
        path=request.url.path,
        method=request.method,
        reason=exc.reason,
        error=exc.message,
        status=exc.status_code,
    )
    record_error("api", type(exc).__name__)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.reason, exc.message, exc.details),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    reason = {401: "unauthorized", 403: "unauthorized", 404: "not-found", 405: "method-not-allowed"}.get(
        exc.status_code, "http-error"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(reason, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content=error_body(
            "invalid_input",
            "Missing or invalid fields: " + ", ".join(f for f in fields if f),
            {"fields": fields},
        ),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Runs outside the request-id middleware, so fall back to request state.
    request_id = get_request_id() or getattr(request.state, "request_id", None)
    logger.error(
        "unhandled_exception",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    record_error("api", type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content=error_body("server-error", "Internal server error", {"requestId": request_id}),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CoachFlowError, coachflow_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
