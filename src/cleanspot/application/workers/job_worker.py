"""Job Worker Pool - runs clean playlist jobs in the background.

Hey future me - the API never processes a job inline. POST /api/jobs inserts a PENDING
row and calls enqueue(job_id); one of N worker tasks picks the id up and calls
CleanPlaylistJobService.process_job() with a FRESH session (session-per-job, same as the
image queue worker - long jobs must not share a session with anything else).

The queue itself is in-memory. That's fine because the job row is the source of truth:
on start() we run recover_jobs() which re-enqueues PENDING rows and fails stale
PROCESSING rows. Enqueuing the same id twice is harmless - the claim CAS in the
repository lets exactly one process_job() call win.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cleanspot.application.services.clean_playlist_job_service import (
    CleanPlaylistJobService,
)
from cleanspot.infrastructure.observability.logging import correlation_scope
from cleanspot.infrastructure.observability.tracing import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

ServiceFactory = Callable[[AsyncSession], CleanPlaylistJobService]


class JobWorkerPool:
    """N asyncio tasks draining a shared queue of job ids."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        service_factory: ServiceFactory,
        concurrency: int = 2,
    ) -> None:
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._concurrency = concurrency
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []
        self._started_at: datetime | None = None
        self._stats: dict[str, int] = {
            "processed": 0,
            "skipped": 0,
            "errors": 0,
            "recovered": 0,
        }

    async def enqueue(self, job_id: str) -> None:
        """Queue a job id for processing. Never blocks (queue is unbounded)."""
        self._queue.put_nowait(job_id)
        logger.debug(f"Enqueued job {job_id} (queue size {self._queue.qsize()})")

    async def start(self) -> None:
        """Recover persisted jobs, then spawn the worker tasks."""
        if self._running:
            logger.warning("JobWorkerPool already running")
            return

        self._running = True
        self._started_at = datetime.now(UTC)

        try:
            pending = await self._recover()
        except Exception as e:
            # Recovery is best-effort - new jobs must still be processed
            logger.exception(f"Job recovery failed: {e}")
            pending = []
        for job_id in pending:
            await self.enqueue(job_id)
        self._stats["recovered"] += len(pending)

        for i in range(self._concurrency):
            task = asyncio.create_task(self._process_loop(worker_id=i), name=f"job-worker-{i}")
            self._tasks.append(task)

        logger.info(f"JobWorkerPool started with {self._concurrency} workers")

    async def stop(self) -> None:
        """Cancel worker tasks. Jobs still in the queue stay PENDING in the DB."""
        if not self._running:
            return

        logger.info("JobWorkerPool stopping...")
        self._running = False

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

        logger.info(
            f"JobWorkerPool stopped. Stats: {self._stats['processed']} processed, "
            f"{self._stats['skipped']} skipped, {self._stats['errors']} errors"
        )

    async def _recover(self) -> list[str]:
        async with self._session_factory() as session:
            service = self._service_factory(session)
            return await service.recover_jobs()

    async def _process_loop(self, worker_id: int) -> None:
        logger.debug(f"Job worker {worker_id} started")

        while self._running:
            try:
                job_id = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            try:
                await self._process_job(job_id)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats["errors"] += 1
                logger.exception(f"Job worker {worker_id} unexpected error on {job_id}: {e}")
            finally:
                self._queue.task_done()

        logger.debug(f"Job worker {worker_id} stopped")

    async def _process_job(self, job_id: str) -> None:
        with (
            correlation_scope(f"job:{job_id}"),
            tracer.start_as_current_span("clean_playlist_job.process") as span,
        ):
            span.set_attribute("cleanspot.job_id", job_id)
            async with self._session_factory() as session:
                service = self._service_factory(session)
                ran = await service.process_job(job_id)
        if ran:
            self._stats["processed"] += 1
        else:
            self._stats["skipped"] += 1

    async def join(self) -> None:
        """Wait until every queued job id has been handled."""
        await self._queue.join()

    def get_stats(self) -> dict[str, Any]:
        uptime_seconds = 0.0
        if self._started_at:
            uptime_seconds = (datetime.now(UTC) - self._started_at).total_seconds()
        return {
            **self._stats,
            "running": self._running,
            "workers": len(self._tasks),
            "concurrency": self._concurrency,
            "queue_size": self._queue.qsize(),
            "uptime_seconds": uptime_seconds,
        }

    @property
    def is_running(self) -> bool:
        return self._running


def create_job_worker_pool(
    session_factory: async_sessionmaker[AsyncSession],
    service_factory: ServiceFactory,
    concurrency: int = 2,
) -> JobWorkerPool:
    """Create a JobWorkerPool with the given configuration."""
    return JobWorkerPool(
        session_factory=session_factory,
        service_factory=service_factory,
        concurrency=concurrency,
    )
