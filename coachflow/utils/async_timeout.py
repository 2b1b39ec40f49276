"""Async Timeout Utilities.

Bounded waits for remote calls (video provider, transcript downloads) so a
hung dependency surfaces as a retryable error rather than a stuck request.
"""

import asyncio
from typing import Awaitable, TypeVar

from coachflow.exceptions import CoachFlowError

T = TypeVar("T")


class AsyncTimeoutError(CoachFlowError):
    """Raised when an async operation times out."""

    reason = "timeout"
    status_code = 504

    def __init__(
        self,
        operation: str,
        timeout_s: float,
        details: dict | None = None,
    ) -> None:
        super().__init__(
            message=f"{operation} timed out after {timeout_s}s",
            details={
                "operation": operation,
                "timeout_s": timeout_s,
                **(details or {}),
            },
            recoverable=True,  # Caller can retry
        )
        self.operation = operation
        self.timeout_s = timeout_s


async def with_timeout(
    coro: Awaitable[T],
    timeout_s: float,
    operation: str = "operation",
) -> T:
    """Execute a coroutine with a timeout.

    Simple wrapper around asyncio.wait_for with custom exception.

    Args:
        coro: Coroutine to execute
        timeout_s: Maximum time in seconds
        operation: Name of operation for error messages

    Returns:
        Result of the coroutine

    Raises:
        AsyncTimeoutError: If operation times out

    Example:
        room = await with_timeout(
            provider.create_room(spec),
            timeout_s=10.0,
            operation="daily room creation",
        )
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout_s)
    except asyncio.TimeoutError:
        raise AsyncTimeoutError(operation, timeout_s)
