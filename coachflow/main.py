"""CoachFlow - FastAPI Application Entry Point.

Live-coaching session orchestrator: session state, video rooms, join
credentials, recordings and bookings behind one HTTP service.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi.middleware import SlowAPIMiddleware

from coachflow import __version__
from coachflow.api.errors import register_error_handlers
from coachflow.api.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware
from coachflow.api.ratelimit import limiter
from coachflow.api.routes import booking, health, join, recordings, sessions, webhooks
from coachflow.config.settings import get_settings
from coachflow.container import get_container
from coachflow.observability.logging import get_logger, init_logging
from coachflow.worker import OutboxWorker

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Wires the service container and starts the outbox worker on startup.
    On shutdown the worker is stopped before provider clients and the
    lock backend are closed.
    """
    worker: OutboxWorker | None = None
    worker_task: asyncio.Task | None = None
    settings = get_settings()
    init_logging(json_format=settings.environment == "production", level=settings.log_level)
    logger.info(
        "coachflow_starting",
        version=__version__,
        environment=settings.environment,
        port=settings.api_port,
    )

    try:
        container = get_container()
        health.set_component_health("repository", True)
        health.set_component_health("lock_backend", True)
        health.set_component_health("video_provider", container.daily.configured)
        if not container.daily.configured:
            logger.warning("video_provider_unconfigured", fallback_host=settings.fallback_video_host)

        await container.capacity.recompute_capacity()

        if container.settings.outbox_worker_enabled:
            worker = OutboxWorker(container)
            app.state.outbox_worker = worker
            worker_task = asyncio.create_task(worker.run())

        health.set_ready(True)
        logger.info("coachflow_ready", components=health.get_component_health())
    except Exception as e:
        logger.error("coachflow_startup_failed", error=str(e))
        raise

    yield

    logger.info("coachflow_shutting_down")
    health.set_ready(False)
    if worker_task is not None:
        worker.stop()
        await worker_task
    await get_container().close()
    logger.info("coachflow_shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="CoachFlow",
        description="Live-coaching video session orchestrator",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    app.include_router(health.router)
    app.include_router(sessions.router)
    app.include_router(booking.router)
    app.include_router(recordings.router)
    app.include_router(webhooks.router)
    app.include_router(webhooks.admin_router)
    app.include_router(join.router)

    if settings.metrics_enabled:

        @app.get("/metrics", include_in_schema=False)
        async def metrics() -> Response:
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    register_error_handlers(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, "WARNING" if settings.log_level == "WARN" else settings.log_level),
    )

    uvicorn.run(
        "coachflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower().replace("warn", "warning"),
        reload=settings.environment == "development",
    )
