"""Request ID middleware for tracing requests across components.

Provides:
- Header extraction (X-Request-ID) or generation
- Propagation through async context and structlog contextvars

Usage in logs:
    logger.info("processing request", request_id=get_request_id())
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

_request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to handle request ID extraction and generation."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()

        token = _request_id_ctx_var.set(request_id)
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
            _request_id_ctx_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def generate_request_id() -> str:
    """Generate a unique request ID (UUID4 hex)."""
    return uuid.uuid4().hex


def get_request_id() -> Optional[str]:
    """Get current request ID from async context."""
    return _request_id_ctx_var.get()
