"""Advisory Locks - Non-blocking mutual exclusion keyed by string.

A lock is identified by an arbitrary string key such as
``"video_room_create:{session_id}"``. Acquisition is try-lock only: when
the key is held, the caller gets LockUnavailableError immediately and is
expected to report "busy" upstream rather than wait.

Backends:
- InMemoryLockBackend: single-process deployments and tests
- RedisLockBackend: shared across processes (SET NX EX + owner-checked
  release). The expiry is the crash-reclaim lease, not a live countdown of
  the protected operation.

Usage:
    locks = AdvisoryLock(InMemoryLockBackend())

    async with locks.hold("session_state:abc") as handle:
        ...

    result = await locks.with_lock("session_state:abc", do_update)
"""

from __future__ import annotations

import math
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from coachflow.config.constants import ORCH
from coachflow.exceptions import LockUnavailableError
from coachflow.observability.logging import get_logger
from coachflow.observability.metrics import record_lock

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_LEASE_S = 10.0


def hash_lock_key(key: str) -> int:
    """Hash a lock key to a stable 31-bit non-negative integer.

    Classic ``h = h * 31 + c`` string hash folded to signed 32 bits.
    Collisions only make unrelated keys contend.
    """
    h = 0
    for ch in key:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % ORCH.LOCK_ID_MODULUS


def lock_namespace(key: str) -> str:
    """Namespace portion of a lock key (text before the first colon)."""
    return key.split(":", 1)[0]


@dataclass
class LockHandle:
    """A held advisory lock."""

    key: str
    owner: str
    lock_id: int
    acquired_at: float = field(default_factory=time.time)


class LockBackend(ABC):
    """Abstract try-lock store."""

    @abstractmethod
    async def try_acquire(self, key: str, owner: str, ttl_s: float) -> bool:
        """Acquire ``key`` for ``owner`` if free (or its lease expired)."""

    @abstractmethod
    async def release(self, key: str, owner: str) -> bool:
        """Release ``key`` if still held by ``owner``."""

    @abstractmethod
    async def is_locked(self, key: str) -> bool:
        """Whether ``key`` is currently held."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryLockBackend(LockBackend):
    """Process-local lock table with lease expiry.

    Each method runs without suspension points, so the check-and-set is
    atomic within one event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._locks: dict[str, tuple[str, float]] = {}

    async def try_acquire(self, key: str, owner: str, ttl_s: float) -> bool:
        now = self._clock()
        current = self._locks.get(key)
        if current is not None and current[1] > now:
            return False
        if current is not None:
            logger.warning("lock_lease_expired", lock_key=key, previous_owner=current[0])
        self._locks[key] = (owner, now + ttl_s)
        return True

    async def release(self, key: str, owner: str) -> bool:
        current = self._locks.get(key)
        if current is None or current[0] != owner:
            return False
        del self._locks[key]
        return True

    async def is_locked(self, key: str) -> bool:
        current = self._locks.get(key)
        return current is not None and current[1] > self._clock()


# Delete only if the stored owner matches
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisLockBackend(LockBackend):
    """Redis-backed lock table shared by every process."""

    def __init__(self, client: Any, prefix: str = "coachflow:lock:") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def try_acquire(self, key: str, owner: str, ttl_s: float) -> bool:
        acquired = await self._client.set(
            self._key(key),
            owner,
            nx=True,
            ex=max(1, math.ceil(ttl_s)),
        )
        return bool(acquired)

    async def release(self, key: str, owner: str) -> bool:
        released = await self._client.eval(_RELEASE_SCRIPT, 1, self._key(key), owner)
        return bool(released)

    async def is_locked(self, key: str) -> bool:
        return bool(await self._client.exists(self._key(key)))

    async def close(self) -> None:
        await self._client.aclose()

    @classmethod
    def from_url(cls, url: str) -> "RedisLockBackend":
        """Create a backend with a pooled asyncio Redis client."""
        import redis.asyncio as redis

        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=20,
            socket_connect_timeout=2.0,
            socket_timeout=2.0,
            health_check_interval=30,
            retry_on_timeout=True,
            decode_responses=True,
        )
        return cls(redis.Redis(connection_pool=pool))


class AdvisoryLock:
    """Try-lock helper with guaranteed release."""

    def __init__(
        self,
        backend: LockBackend,
        default_lease_s: float = DEFAULT_LEASE_S,
    ) -> None:
        self._backend = backend
        self._default_lease_s = default_lease_s

    @property
    def backend(self) -> LockBackend:
        return self._backend

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        owner: str | None = None,
        lease_s: float | None = None,
        session_id: str | None = None,
    ) -> AsyncIterator[LockHandle]:
        """Hold ``key`` for the duration of the block.

        Raises:
            LockUnavailableError: If the key is already held
        """
        owner = owner or uuid.uuid4().hex
        lease = lease_s if lease_s is not None else self._default_lease_s
        acquired = await self._backend.try_acquire(key, owner, lease)
        record_lock(lock_namespace(key), acquired)
        if not acquired:
            raise LockUnavailableError(key, session_id=session_id)

        handle = LockHandle(key=key, owner=owner, lock_id=hash_lock_key(key))
        try:
            yield handle
        finally:
            released = await self._backend.release(key, owner)
            if not released:
                logger.warning("lock_release_missed", lock_key=key, lock_id=handle.lock_id)

    async def with_lock(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        timeout_s: float | None = None,
        owner: str | None = None,
    ) -> T:
        """Run ``operation`` while holding ``key``.

        ``timeout_s`` is the lease after which a crashed holder's lock is
        reclaimable.
        """
        async with self.hold(key, owner=owner, lease_s=timeout_s):
            return await operation()

    async def is_locked(self, key: str) -> bool:
        return await self._backend.is_locked(key)
