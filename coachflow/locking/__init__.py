"""Advisory locking."""

from coachflow.locking.advisory import (
    AdvisoryLock,
    InMemoryLockBackend,
    LockBackend,
    LockHandle,
    RedisLockBackend,
    hash_lock_key,
)

__all__ = [
    "AdvisoryLock",
    "InMemoryLockBackend",
    "LockBackend",
    "LockHandle",
    "RedisLockBackend",
    "hash_lock_key",
]
