"""Pytest configuration and shared fixtures."""

import json
import os
from datetime import timedelta
from typing import Callable, Generator

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# Set test environment variables before importing settings
os.environ.update({
    "ENVIRONMENT": "development",
    "RATE_LIMIT_ENABLED": "false",  # Disable rate limiting for tests
    "REDIS_URL": "memory://",
    "DAILY_API_KEY": "test-daily-key",
    "DAILY_WEBHOOK_SECRET": "test-webhook-secret",
    "WEBSITE_URL": "https://app.example.test",
    "FALLBACK_VIDEO_HOST": "meet.videosdk.live",
})

from coachflow.config.settings import Settings  # noqa: E402
from coachflow.container import ServiceContainer, set_container  # noqa: E402
from coachflow.locking.advisory import AdvisoryLock, InMemoryLockBackend  # noqa: E402
from coachflow.orchestrator.capacity import CapacityGate  # noqa: E402
from coachflow.orchestrator.models import (  # noqa: E402
    Coach,
    Profile,
    Session,
    SessionState,
    new_id,
    utcnow,
)
from coachflow.orchestrator.repository import InMemorySessionRepository  # noqa: E402
from coachflow.orchestrator.state_machine import SessionStateMachine  # noqa: E402
from coachflow.video.daily import DailyProvider  # noqa: E402

WEBHOOK_SECRET = "test-webhook-secret"
WEBSITE_URL = "https://app.example.test"


class DailyStub:
    """Records provider calls and answers like the Daily REST API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_rooms = False
        self.webhooks: list[dict] = []

    def paths(self, method: str | None = None) -> list[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1")
        body = json.loads(request.content) if request.content else {}

        if request.method == "POST" and path == "/rooms":
            if self.fail_rooms:
                return httpx.Response(500, json={"error": "server-error"})
            name = body["name"]
            return httpx.Response(
                200, json={"name": name, "url": f"https://coachflow.daily.co/{name}"}
            )
        if request.method == "POST" and path == "/meeting-tokens":
            props = body["properties"]
            return httpx.Response(200, json={"token": f"tok-{props['user_id']}"})
        if request.method == "GET" and path == "/webhooks":
            return httpx.Response(200, json={"data": self.webhooks})
        if request.method == "POST" and path == "/webhooks":
            hook = {"uuid": "hook-1", **body}
            self.webhooks.append(hook)
            return httpx.Response(200, json=hook)
        if request.method == "POST" and path.startswith("/webhooks/"):
            return httpx.Response(200, json={"uuid": path.rsplit("/", 1)[-1], **body})
        return httpx.Response(404, json={"error": "not-found"})


@pytest.fixture
def test_settings() -> Settings:
    """Provide test settings instance."""
    return Settings(_env_file=None)


@pytest.fixture
def daily_stub() -> DailyStub:
    return DailyStub()


@pytest.fixture
def daily(daily_stub: DailyStub) -> DailyProvider:
    """Daily provider talking to the in-process stub."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(daily_stub))
    return DailyProvider(
        api_key="test-daily-key",
        base_url="https://api.daily.co/v1",
        client=client,
    )


@pytest.fixture
def repo() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def locks() -> AdvisoryLock:
    return AdvisoryLock(InMemoryLockBackend(), default_lease_s=60)


@pytest.fixture
def capacity(repo) -> CapacityGate:
    return CapacityGate(repo, max_sessions=10, max_db_connections=60)


@pytest.fixture
def fsm(repo, locks, capacity) -> SessionStateMachine:
    return SessionStateMachine(repo, locks, capacity, lock_ttl_s=600)


@pytest.fixture
def make_session(repo) -> Callable:
    """Insert a session (default: scheduled in one hour) and return it."""

    async def _make(
        state: SessionState = SessionState.SCHEDULED,
        coach_id: str = "coach-1",
        client_id: str = "client-user",
        **fields,
    ) -> Session:
        session = Session(
            id=fields.pop("id", new_id()),
            coach_id=coach_id,
            client_id=client_id,
            scheduled_time=fields.pop("scheduled_time", utcnow() + timedelta(hours=1)),
            duration_minutes=fields.pop("duration_minutes", 60),
            state=state,
            **fields,
        )
        return await repo.insert_session(session)

    return _make


@pytest_asyncio.fixture
async def seeded(repo) -> Coach:
    """A coach (user ``coach-user``) and a client profile."""
    coach = Coach(
        id="coach-1",
        user_id="coach-user",
        name="Alex Coach",
        hourly_rate_amount=60.0,
        hourly_coin_cost=4,
        min_session_duration=45,
        notification_email="coach@example.test",
    )
    await repo.save_coach(coach)
    await repo.save_profile(Profile(user_id="client-user", full_name="Casey Client"))
    return coach


@pytest.fixture
def container(test_settings, repo, daily) -> Generator[ServiceContainer, None, None]:
    """Fresh container wired to the in-memory repo and the Daily stub."""
    c = ServiceContainer(
        test_settings,
        repository=repo,
        lock_backend=InMemoryLockBackend(),
        daily=daily,
    )
    set_container(c)
    yield c
    set_container(None)


@pytest.fixture
def client(container) -> Generator[TestClient, None, None]:
    """Provide FastAPI test client bound to the test container."""
    from coachflow.main import app

    with TestClient(app) as c:
        yield c
