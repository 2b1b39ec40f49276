"""Outbox Worker - drains queued side calls on an interval.

The API process runs one worker as a background task for the lifetime of
the app, sharing its container and so its outbox. Items are POSTed to
``OUTBOX_DELIVERY_URL`` when configured; otherwise they are logged and
marked sent, which keeps development setups free of mail/analysis
services.
"""

from __future__ import annotations

import asyncio

import httpx

from coachflow.container import ServiceContainer
from coachflow.observability.logging import get_logger
from coachflow.orchestrator.models import OutboxItem
from coachflow.outbox import DrainResult, OutboxHandler

logger = get_logger(__name__)


def make_http_handler(client: httpx.AsyncClient, url: str) -> OutboxHandler:
    """Deliver each item as a JSON POST; non-2xx responses fail the attempt."""

    async def deliver(item: OutboxItem) -> None:
        response = await client.post(
            url,
            json={"id": item.id, "kind": item.kind, "payload": item.payload},
            headers={"Idempotency-Key": item.dedup_key},
        )
        response.raise_for_status()

    return deliver


async def log_only_handler(item: OutboxItem) -> None:
    logger.info("outbox_item_delivered", kind=item.kind, item_id=item.id, dedup_key=item.dedup_key)


class OutboxWorker:
    """Periodic drain loop with cooperative shutdown.

    Usage:
        worker = OutboxWorker(container)
        task = asyncio.create_task(worker.run())
        ...
        worker.stop()
        await task
    """

    def __init__(
        self,
        container: ServiceContainer,
        handler: OutboxHandler | None = None,
        poll_interval_s: float | None = None,
    ) -> None:
        self._container = container
        settings = container.settings
        self._poll_interval_s = poll_interval_s or settings.outbox_poll_interval_s
        self._client: httpx.AsyncClient | None = None

        if handler is None and settings.outbox_delivery_url:
            self._client = httpx.AsyncClient(timeout=settings.video_provider_timeout_s)
            handler = make_http_handler(self._client, settings.outbox_delivery_url)
        self._handler = handler or log_only_handler
        self._stopped = asyncio.Event()

    def stop(self) -> None:
        self._stopped.set()

    async def run_once(self) -> DrainResult:
        return await self._container.outbox.drain(self._handler)

    async def run(self) -> None:
        logger.info("outbox_worker_started", poll_interval_s=self._poll_interval_s)
        try:
            while not self._stopped.is_set():
                try:
                    await self.run_once()
                except Exception as exc:
                    logger.error("outbox_drain_failed", error=str(exc), exc_info=exc)
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self._poll_interval_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._client is not None:
                await self._client.aclose()
            logger.info("outbox_worker_stopped")

