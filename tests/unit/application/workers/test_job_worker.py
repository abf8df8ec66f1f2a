"""Tests for JobWorkerPool.

Hey future me - these run the REAL job service against the temp SQLite file, one session
per job exactly like production. concurrency=1 keeps SQLite writers from queueing up on
the file lock.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fakes import make_track

from cleanspot.application.services.clean_playlist_job_service import CleanPlaylistJobService
from cleanspot.application.services.credential_vault import CredentialVault
from cleanspot.application.workers.job_worker import JobWorkerPool, create_job_worker_pool
from cleanspot.domain.entities import DEFAULT_PROVIDER, JobStatus
from cleanspot.infrastructure.persistence.models import CleanPlaylistJobModel


@pytest_asyncio.fixture
async def pool(db, encryption, catalog, broadcaster, settings):
    holder: dict[str, JobWorkerPool] = {}

    def factory(session) -> CleanPlaylistJobService:
        return CleanPlaylistJobService(
            session,
            CredentialVault(session, encryption, {DEFAULT_PROVIDER: catalog}),
            catalog,
            broadcaster,
            settings.jobs,
            enqueue=holder["pool"].enqueue,
        )

    holder["pool"] = create_job_worker_pool(db.session_factory, factory, concurrency=1)
    yield holder["pool"]
    await holder["pool"].stop()


@pytest.fixture
def jobs(session, vault, catalog, broadcaster, settings, pool) -> CleanPlaylistJobService:
    return CleanPlaylistJobService(
        session, vault, catalog, broadcaster, settings.jobs, enqueue=pool.enqueue
    )


async def _status(session, job_id: str) -> str:
    job = await session.get(CleanPlaylistJobModel, job_id, populate_existing=True)
    return job.status


class TestJobWorkerPool:
    """Background job processing."""

    @pytest.mark.asyncio
    async def test_submitted_job_is_processed_in_background(
        self, session, pool, jobs, catalog, connected_user
    ) -> None:
        """Submitting a job gets it processed."""
        catalog.add_playlist("src", [make_track("a"), make_track("e", explicit=True)])
        catalog.add_clean("e", "e-clean")
        await pool.start()

        job = await jobs.create_job(connected_user, "src")
        await asyncio.wait_for(pool.join(), timeout=5)

        assert await _status(session, job.id) == JobStatus.COMPLETED.value
        assert pool.get_stats()["processed"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_enqueue_is_skipped(
        self, session, pool, jobs, catalog, connected_user
    ) -> None:
        """The same job id is queued once."""
        catalog.add_playlist("src", [make_track("a")])
        await pool.start()

        job = await jobs.create_job(connected_user, "src")
        await pool.enqueue(job.id)
        await asyncio.wait_for(pool.join(), timeout=5)

        stats = pool.get_stats()
        assert stats["processed"] == 1
        assert stats["skipped"] == 1
        assert await _status(session, job.id) == JobStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_start_recovers_pending_jobs(
        self, session, pool, catalog, connected_user
    ) -> None:
        """Startup re-queues PENDING jobs."""
        catalog.add_playlist("src", [make_track("a")])
        job = CleanPlaylistJobModel(
            user_id=connected_user,
            source_playlist_id="src",
            source_playlist_name="Road Trip",
            target_playlist_name="Road Trip (Clean)",
            status=JobStatus.PENDING.value,
        )
        session.add(job)
        await session.commit()

        await pool.start()
        await asyncio.wait_for(pool.join(), timeout=5)

        assert pool.get_stats()["recovered"] == 1
        assert await _status(session, job.id) == JobStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_stop_cancels_workers(self, pool) -> None:
        """stop() cancels every worker task."""
        await pool.start()
        assert pool.is_running is True
        assert pool.get_stats()["workers"] == 1

        await pool.stop()

        assert pool.is_running is False
        assert pool.get_stats()["workers"] == 0


class TestJobWorkerPoolErrors:
    """The pool survives bad jobs and bad startups."""

    @pytest.fixture
    def session_factory(self) -> MagicMock:
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=AsyncMock())
        factory.return_value.__aexit__ = AsyncMock(return_value=None)
        return factory

    @pytest.mark.asyncio
    async def test_crashing_job_is_counted_and_loop_survives(self, session_factory) -> None:
        """An exception in one job doesn't kill the worker."""
        service = AsyncMock(spec=CleanPlaylistJobService)
        service.recover_jobs.return_value = []
        service.process_job.side_effect = [RuntimeError("boom"), True]
        pool = JobWorkerPool(session_factory, lambda _session: service, concurrency=1)
        await pool.start()

        await pool.enqueue("job-1")
        await pool.enqueue("job-2")
        await asyncio.wait_for(pool.join(), timeout=5)
        await pool.stop()

        stats = pool.get_stats()
        assert stats["errors"] == 1
        assert stats["processed"] == 1

    @pytest.mark.asyncio
    async def test_failed_recovery_still_starts_workers(self, session_factory) -> None:
        """Recovery errors are logged and workers start anyway."""
        service = AsyncMock(spec=CleanPlaylistJobService)
        service.recover_jobs.side_effect = RuntimeError("db down")
        pool = JobWorkerPool(session_factory, lambda _session: service, concurrency=2)

        await pool.start()
        try:
            assert pool.get_stats()["workers"] == 2
            assert pool.get_stats()["recovered"] == 0
        finally:
            await pool.stop()
