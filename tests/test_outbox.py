"""Tests for the outbox queue and its worker."""

import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from coachflow.orchestrator.models import OutboxStatus, utcnow
from coachflow.outbox import EMAIL_COACH_NOTIFICATION, EMAIL_SESSION_DECLINED, OutboxQueue
from coachflow.worker import OutboxWorker, make_http_handler


class MutableClock:
    def __init__(self) -> None:
        self.now = utcnow()

    def __call__(self):
        return self.now


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def outbox(repo, clock) -> OutboxQueue:
    return OutboxQueue(repo, max_attempts=2, retention_days=7, clock=clock)


class TestEnqueue:

    @pytest.mark.asyncio
    async def test_dedup_key_queues_once(self, outbox, repo):
        first = await outbox.enqueue(EMAIL_COACH_NOTIFICATION, "coach-notify:s1", {"n": 1})
        second = await outbox.enqueue(EMAIL_COACH_NOTIFICATION, "coach-notify:s1", {"n": 2})

        assert second.id == first.id
        assert second.payload == {"n": 1}
        assert len(await repo.list_outbox_due(utcnow() + timedelta(seconds=1), 10)) == 1

    @pytest.mark.asyncio
    async def test_future_items_wait(self, outbox, repo, clock):
        await outbox.enqueue(EMAIL_COACH_NOTIFICATION, "later", {}, scheduled_for=clock.now + timedelta(hours=1))

        delivered = []

        async def handler(item):
            delivered.append(item.dedup_key)

        await outbox.drain(handler)
        assert delivered == []

        clock.now += timedelta(hours=2)
        await outbox.drain(handler)
        assert delivered == ["later"]


class TestDrain:

    @pytest.mark.asyncio
    async def test_delivers_in_creation_order(self, outbox, clock):
        for key in ("a", "b", "c"):
            await outbox.enqueue(EMAIL_COACH_NOTIFICATION, key, {})
            clock.now += timedelta(milliseconds=1)

        delivered = []

        async def handler(item):
            delivered.append(item.dedup_key)

        result = await outbox.drain(handler)

        assert delivered == ["a", "b", "c"]
        assert result.sent == 3
        assert (await outbox.drain(handler)).sent == 0

    @pytest.mark.asyncio
    async def test_failures_retry_until_max_attempts(self, outbox, repo):
        await outbox.enqueue(EMAIL_SESSION_DECLINED, "declined:s1", {})

        async def broken(item):
            raise RuntimeError("smtp down")

        assert (await outbox.drain(broken)).failed == 1
        assert (await outbox.drain(broken)).failed == 1
        assert (await outbox.drain(broken)).failed == 0

        item = await repo.find_outbox_item("declined:s1")
        assert item.status == OutboxStatus.FAILED
        assert item.attempts == 2
        assert item.last_error == "smtp down"

    @pytest.mark.asyncio
    async def test_retry_succeeds_after_failure(self, outbox, repo):
        await outbox.enqueue(EMAIL_SESSION_DECLINED, "declined:s1", {})
        calls = []

        async def flaky(item):
            calls.append(item.attempts)
            if len(calls) == 1:
                raise RuntimeError("timeout")

        await outbox.drain(flaky)
        await outbox.drain(flaky)

        item = await repo.find_outbox_item("declined:s1")
        assert item.status == OutboxStatus.SENT
        assert calls == [1, 2]

    @pytest.mark.asyncio
    async def test_sent_items_purged_after_retention(self, outbox, repo, clock):
        await outbox.enqueue(EMAIL_COACH_NOTIFICATION, "old", {})

        async def ok(item):
            pass

        await outbox.drain(ok)
        assert await repo.find_outbox_item("old") is not None

        clock.now += timedelta(days=8)
        assert await outbox.purge() == 1
        assert await repo.find_outbox_item("old") is None


class TestWorker:

    @pytest.mark.asyncio
    async def test_http_handler_posts_with_idempotency_key(self, outbox, repo):
        seen = []

        def receiver(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        await outbox.enqueue(EMAIL_COACH_NOTIFICATION, "coach-notify:s1", {"sessionId": "s1"})
        async with httpx.AsyncClient(transport=httpx.MockTransport(receiver)) as client:
            result = await outbox.drain(make_http_handler(client, "https://mail.example.test/outbox"))

        assert result.sent == 1
        assert seen[0].headers["Idempotency-Key"] == "coach-notify:s1"
        body = json.loads(seen[0].content)
        assert body["kind"] == EMAIL_COACH_NOTIFICATION
        assert body["payload"] == {"sessionId": "s1"}

    @pytest.mark.asyncio
    async def test_http_error_fails_attempt(self, outbox, repo):
        await outbox.enqueue(EMAIL_COACH_NOTIFICATION, "coach-notify:s1", {})
        transport = httpx.MockTransport(lambda request: httpx.Response(503))

        async with httpx.AsyncClient(transport=transport) as client:
            result = await outbox.drain(make_http_handler(client, "https://mail.example.test/outbox"))

        assert result.failed == 1

    @pytest.mark.asyncio
    async def test_run_once_uses_container_outbox(self, container):
        await container.outbox.enqueue(EMAIL_COACH_NOTIFICATION, "k", {})
        worker = OutboxWorker(container)

        result = await worker.run_once()

        assert result.sent == 1

    @pytest.mark.asyncio
    async def test_run_stops_cleanly(self, container):
        delivered = []

        async def handler(item):
            delivered.append(item.dedup_key)

        await container.outbox.enqueue(EMAIL_COACH_NOTIFICATION, "k", {})
        worker = OutboxWorker(container, handler=handler, poll_interval_s=0.01)

        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.05)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert delivered == ["k"]
