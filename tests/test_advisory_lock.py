"""Tests for Advisory Locking.

Tests cover:
- 31-bit lock key hashing
- Fail-fast acquisition and guaranteed release
- Lease expiry in the in-process backend
- Redis backend commands (mocked client)
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from coachflow.exceptions import LockUnavailableError
from coachflow.locking.advisory import (
    AdvisoryLock,
    InMemoryLockBackend,
    RedisLockBackend,
    hash_lock_key,
    lock_namespace,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestHashLockKey:

    def test_known_values(self):
        assert hash_lock_key("") == 0
        assert hash_lock_key("a") == 97
        assert hash_lock_key("abc") == 96354

    def test_stable_and_in_range(self):
        key = "video_room_create:3f1c6a52-8e0b-4a7e-9f3e-1b2c3d4e5f60"
        value = hash_lock_key(key)
        assert value == hash_lock_key(key)
        assert 0 <= value < 2**31 - 1

    def test_long_keys_stay_non_negative(self):
        for i in range(200):
            assert hash_lock_key(f"session_state:{'x' * i}") >= 0

    def test_namespace(self):
        assert lock_namespace("session_state:abc") == "session_state"
        assert lock_namespace("plain") == "plain"


class TestAdvisoryLock:

    @pytest.mark.asyncio
    async def test_with_lock_returns_operation_result(self):
        locks = AdvisoryLock(InMemoryLockBackend())

        async def operation():
            return 42

        assert await locks.with_lock("k:1", operation) == 42
        assert await locks.is_locked("k:1") is False

    @pytest.mark.asyncio
    async def test_second_holder_fails_fast(self):
        locks = AdvisoryLock(InMemoryLockBackend())

        async with locks.hold("session_state:abc", session_id="abc"):
            with pytest.raises(LockUnavailableError) as exc_info:
                async with locks.hold("session_state:abc", session_id="abc"):
                    pass

        assert exc_info.value.lock_key == "session_state:abc"
        assert exc_info.value.session_id == "abc"

    @pytest.mark.asyncio
    async def test_released_after_exception(self):
        locks = AdvisoryLock(InMemoryLockBackend())

        async def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await locks.with_lock("k:1", failing)

        assert await locks.is_locked("k:1") is False
        async with locks.hold("k:1"):
            pass

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_contend(self):
        locks = AdvisoryLock(InMemoryLockBackend())
        async with locks.hold("session_state:a"):
            async with locks.hold("session_state:b"):
                assert await locks.is_locked("session_state:a")
                assert await locks.is_locked("session_state:b")

    @pytest.mark.asyncio
    async def test_exactly_one_concurrent_execution(self):
        locks = AdvisoryLock(InMemoryLockBackend())
        running = 0
        peak = 0

        async def operation():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return True

        results = await asyncio.gather(
            *(locks.with_lock("room:1", operation) for _ in range(5)),
            return_exceptions=True,
        )

        assert peak == 1
        assert sum(1 for r in results if r is True) == 1
        assert all(isinstance(r, LockUnavailableError) for r in results if r is not True)


class TestInMemoryLockBackend:

    @pytest.mark.asyncio
    async def test_expired_lease_is_reclaimable(self):
        clock = FakeClock()
        backend = InMemoryLockBackend(clock=clock)

        assert await backend.try_acquire("k", "crashed", ttl_s=10) is True
        assert await backend.try_acquire("k", "other", ttl_s=10) is False

        clock.now += 11
        assert await backend.is_locked("k") is False
        assert await backend.try_acquire("k", "other", ttl_s=10) is True

    @pytest.mark.asyncio
    async def test_release_checks_owner(self):
        backend = InMemoryLockBackend()
        await backend.try_acquire("k", "owner-a", ttl_s=10)

        assert await backend.release("k", "owner-b") is False
        assert await backend.is_locked("k") is True
        assert await backend.release("k", "owner-a") is True


class TestRedisLockBackend:

    @pytest.mark.asyncio
    async def test_acquire_uses_set_nx_with_ttl(self):
        client = AsyncMock()
        client.set.return_value = True
        backend = RedisLockBackend(client)

        assert await backend.try_acquire("session_state:abc", "owner", ttl_s=2.5) is True
        client.set.assert_awaited_once_with(
            "coachflow:lock:session_state:abc", "owner", nx=True, ex=3
        )

    @pytest.mark.asyncio
    async def test_acquire_reports_contention(self):
        client = AsyncMock()
        client.set.return_value = None
        backend = RedisLockBackend(client)

        assert await backend.try_acquire("k", "owner", ttl_s=1) is False

    @pytest.mark.asyncio
    async def test_release_is_owner_checked_script(self):
        client = AsyncMock()
        client.eval.return_value = 0
        backend = RedisLockBackend(client, prefix="p:")

        assert await backend.release("k", "not-owner") is False
        args = client.eval.await_args.args
        assert args[1:] == (1, "p:k", "not-owner")
