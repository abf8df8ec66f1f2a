"""Application lifecycle management for startup and shutdown tasks.

Startup order: logging → database + tables → service container → job worker pool
(with crash recovery) → sync scheduler → webhook retry sweeper. Shutdown runs the
same list backwards.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI

from cleanspot.application.workers.job_worker import create_job_worker_pool
from cleanspot.application.workers.sync_scheduler_worker import (
    create_sync_scheduler_worker,
)
from cleanspot.application.workers.webhook_retry_worker import (
    create_webhook_retry_worker,
)
from cleanspot.config import Settings, get_settings
from cleanspot.infrastructure.container import build_container
from cleanspot.infrastructure.observability import (
    configure_logging,
    configure_tracing,
    instrument_httpx,
)
from cleanspot.infrastructure.persistence import Database

logger = logging.getLogger(__name__)


async def _cancel_task(task: asyncio.Task[None] | None) -> None:
    if task is None:
        return
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


# Listen future me, everything before `yield` runs at STARTUP, everything after runs at
# SHUTDOWN. The try/finally makes cleanup run even when startup blows up halfway, which
# is why every resource starts as None and the shutdown block checks each one.
# Settings come from app.state.settings when create_app() was handed explicit ones (tests).
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = getattr(app.state, "settings", None) or get_settings()

    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    if settings.observability.tracing_enabled:
        configure_tracing(
            service_name=settings.app_name.lower(),
            environment=settings.observability.environment,
            otlp_endpoint=settings.observability.otlp_endpoint,
            enable_console_exporter=settings.observability.trace_console_exporter,
        )
        instrument_httpx()

    db: Database | None = None
    container = None
    job_pool = None
    sync_scheduler = None
    sync_task: asyncio.Task[None] | None = None
    webhook_worker = None
    webhook_task: asyncio.Task[None] | None = None

    try:
        db = Database(settings)
        await db.create_tables()
        app.state.db = db
        logger.info("Database initialized: %s", settings.database.url)

        container = build_container(settings)
        app.state.container = container

        job_pool = create_job_worker_pool(
            session_factory=db.session_factory,
            service_factory=container.job_service,
            concurrency=settings.jobs.worker_count,
        )
        container.job_pool = job_pool
        await job_pool.start()
        app.state.job_pool = job_pool

        sync_scheduler = create_sync_scheduler_worker(
            session_factory=db.session_factory,
            service_factory=container.sync_service,
            poll_interval=settings.sync.poll_interval_seconds,
            max_concurrent=settings.sync.max_concurrent,
        )
        sync_task = asyncio.create_task(sync_scheduler.start(), name="sync-scheduler")
        app.state.sync_scheduler = sync_scheduler

        webhook_worker = create_webhook_retry_worker(
            session_factory=db.session_factory,
            service_factory=container.webhook_service,
            check_interval=settings.webhooks.sweep_interval_seconds,
            batch_size=settings.webhooks.sweep_batch_size,
        )
        webhook_task = asyncio.create_task(webhook_worker.start(), name="webhook-retry")
        app.state.webhook_retry_worker = webhook_worker

        logger.info(
            "Background workers started (job workers=%d, sync every %ds, webhook sweep every %ds)",
            settings.jobs.worker_count,
            settings.sync.poll_interval_seconds,
            settings.webhooks.sweep_interval_seconds,
        )

        yield

    except Exception as e:
        logger.exception("Error during application startup: %s", e)
        raise
    finally:
        logger.info("Shutting down application")

        if webhook_worker is not None:
            webhook_worker.stop()
        await _cancel_task(webhook_task)

        if sync_scheduler is not None:
            sync_scheduler.stop()
        await _cancel_task(sync_task)

        if job_pool is not None:
            try:
                await job_pool.stop()
            except Exception as e:
                logger.exception("Error stopping job worker pool: %s", e)

        if container is not None:
            try:
                await container.catalog.close()
            except Exception as e:
                logger.exception("Error closing Spotify client: %s", e)

        if db is not None:
            try:
                await db.close()
                logger.info("Database connection closed")
            except Exception as e:
                logger.exception("Error closing database: %s", e)
