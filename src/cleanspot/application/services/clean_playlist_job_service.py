"""Clean-Playlist Job Engine.

Hey future me - this owns the one-shot job state machine:

    PENDING ──claim()──► PROCESSING ──► COMPLETED
                               └──────► FAILED

- create_job() validates + inserts PENDING + enqueues, and returns right away
- process_job() is called by JobWorkerPool. The PENDING→PROCESSING hop is a
  compare-and-swap in the repository, so a second invocation for the same job (duplicate
  enqueue, two workers) is a harmless no-op
- tracks are processed in batches. Each finished batch is committed together with the
  progress counters, so a crash loses at most one batch
- a batch that hits a transient provider error (5xx, timeout, 429) is retried a couple of
  times before the job gives up
- FAILED is final. Users resubmit. We never auto-retry a failed job
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import timedelta
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.application.services.credential_vault import CredentialVault
from cleanspot.application.services.progress_broadcaster import (
    JOB_COMPLETED,
    JOB_FAILED,
    PROGRESS_UPDATE,
    ProgressBroadcaster,
)
from cleanspot.application.services.track_matching import TrackMatcher
from cleanspot.config.settings import JobSettings
from cleanspot.domain.entities import DEFAULT_PROVIDER, JobStatus
from cleanspot.domain.exceptions import (
    CredentialError,
    DomainException,
    ExternalServiceError,
    RateLimitExceededError,
    ValidationException,
)
from cleanspot.domain.ports import CatalogTrack, ICatalogProvider
from cleanspot.infrastructure.persistence.models import (
    CleanPlaylistJobModel,
    TrackMappingModel,
    utc_now,
)
from cleanspot.infrastructure.persistence.repositories import (
    CleanPlaylistJobRepository,
    TrackMappingRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (ExternalServiceError, RateLimitExceededError)

STALE_JOB_MESSAGE = "Processing was interrupted. Please submit the playlist again."


class CleanPlaylistJobService:
    """Creates and processes clean playlist jobs."""

    def __init__(
        self,
        session: AsyncSession,
        vault: CredentialVault,
        catalog: ICatalogProvider,
        broadcaster: ProgressBroadcaster,
        settings: JobSettings,
        enqueue: Callable[[str], Awaitable[None]] | None = None,
        provider: str = DEFAULT_PROVIDER,
    ) -> None:
        self._session = session
        self._vault = vault
        self._catalog = catalog
        self._matcher = TrackMatcher(catalog)
        self._broadcaster = broadcaster
        self._settings = settings
        self._enqueue = enqueue
        self._provider = provider
        self._jobs = CleanPlaylistJobRepository(session)
        self._mappings = TrackMappingRepository(session)

    # =========================================================================
    # Submission + queries
    # =========================================================================

    async def create_job(
        self, user_id: str, source_playlist_id: str, target_name: str | None = None
    ) -> CleanPlaylistJobModel:
        """Validate the source playlist, persist a PENDING job and enqueue it.

        Raises:
            ValidationException: Playlist doesn't exist or isn't visible to the user
            CredentialError: User has no usable provider token
        """
        source_playlist_id = source_playlist_id.strip()
        if not source_playlist_id:
            raise ValidationException("Source playlist id is required")

        access_token = await self._vault.get_valid_access_token(user_id, self._provider)
        playlist = await self._catalog.get_playlist(access_token, source_playlist_id)
        if playlist is None:
            raise ValidationException(
                f"Playlist {source_playlist_id} was not found or is not accessible"
            )

        name = (target_name or "").strip() or f"{playlist.name} (Clean)"
        job = CleanPlaylistJobModel(
            user_id=user_id,
            source_playlist_id=playlist.id,
            source_playlist_name=playlist.name,
            target_playlist_name=name,
            status=JobStatus.PENDING.value,
            total_tracks=playlist.track_count,
            processed_tracks=0,
            matched_tracks=0,
        )
        await self._jobs.add(job)
        await self._session.commit()
        logger.info(f"Created clean playlist job {job.id} for playlist {playlist.id}")

        if self._enqueue is not None:
            await self._enqueue(job.id)
        return job

    async def get_job(self, job_id: str, user_id: str) -> CleanPlaylistJobModel:
        return await self._jobs.get_for_user(job_id, user_id)

    async def list_jobs(self, user_id: str, limit: int = 50) -> Sequence[CleanPlaylistJobModel]:
        return await self._jobs.list_for_user(user_id, limit)

    async def get_job_mappings(
        self, job_id: str, user_id: str
    ) -> Sequence[TrackMappingModel]:
        await self._jobs.get_for_user(job_id, user_id)
        return await self._mappings.list_for_job(job_id)

    async def refresh_job(self, job_id: str) -> CleanPlaylistJobModel | None:
        """Current row state, bypassing anything cached in the session."""
        return await self._jobs.get(job_id, refresh=True)

    async def is_processing(self, job_id: str) -> bool:
        job = await self._jobs.get(job_id, refresh=True)
        return job is not None and job.status in (
            JobStatus.PENDING.value,
            JobStatus.PROCESSING.value,
        )

    # Hey future me - call this ONCE on worker startup (JobWorkerPool.start does). PENDING
    # jobs were never claimed, so they are simply re-enqueued. PROCESSING jobs that haven't
    # been touched for stale_after_minutes belong to a worker that died mid-batch. They're
    # failed, never resumed. The user resubmits.
    async def recover_jobs(self) -> list[str]:
        """Fail stale PROCESSING jobs and return PENDING job ids to re-enqueue."""
        failed = await self._jobs.fail_stale_processing(
            timedelta(minutes=self._settings.stale_after_minutes), STALE_JOB_MESSAGE
        )
        pending = await self._jobs.list_ids_by_status(JobStatus.PENDING)
        await self._session.commit()
        if failed:
            logger.warning(f"Failed {failed} stale processing jobs")
        if pending:
            logger.info(f"Recovered {len(pending)} pending jobs")
        return pending

    # =========================================================================
    # Processing
    # =========================================================================

    async def process_job(self, job_id: str) -> bool:
        """Run a job to a terminal state.

        Returns:
            True if this call claimed and ran the job, False if it was not PENDING
            (already claimed elsewhere, finished, or unknown)
        """
        claimed = await self._jobs.claim(job_id)
        await self._session.commit()
        if not claimed:
            logger.info(f"Job {job_id} is not pending, skipping")
            return False

        job = await self._jobs.get(job_id, refresh=True)
        if job is None:
            return False

        logger.info(f"Processing job {job_id} (playlist {job.source_playlist_id})")
        try:
            await self._run(job)
        except Exception as e:
            await self._fail(job_id, e)
        return True

    async def _run(self, job: CleanPlaylistJobModel) -> None:
        access_token = await self._vault.get_valid_access_token(job.user_id, self._provider)
        tracks = await self._with_retry(
            lambda: self._catalog.list_tracks(access_token, job.source_playlist_id),
            f"fetching tracks of {job.source_playlist_id}",
        )

        job.total_tracks = len(tracks)
        await self._session.commit()

        batch_size = self._settings.batch_size
        batches = [tracks[i : i + batch_size] for i in range(0, len(tracks), batch_size)]
        seen: set[str] = set()
        mappings: list[TrackMappingModel] = []

        for index, batch in enumerate(batches, start=1):
            # Token may expire during a long job - the vault refreshes if needed
            access_token = await self._vault.get_valid_access_token(
                job.user_id, self._provider
            )
            batch_mappings = await self._with_retry(
                lambda: self._match_batch(access_token, job.id, batch, len(mappings), seen),
                f"batch {index}/{len(batches)} of job {job.id}",
            )
            await self._mappings.add_many(batch_mappings)
            seen.update(m.source_track_id for m in batch_mappings)
            mappings.extend(batch_mappings)

            job.processed_tracks = min(job.total_tracks, job.processed_tracks + len(batch))
            job.matched_tracks += sum(1 for m in batch_mappings if m.has_clean_match)
            job.current_batch = f"Batch {index}/{len(batches)}"
            await self._session.commit()

            await self._broadcaster.publish(job.id, PROGRESS_UPDATE, self.progress_payload(job))

        if job.matched_tracks > 0:
            await self._create_target_playlist(access_token, job, mappings)
        else:
            logger.info(f"Job {job.id} found no clean matches, no target playlist created")

        now = utc_now()
        job.processed_tracks = job.total_tracks
        job.status = JobStatus.COMPLETED.value
        job.completed_at = now
        await self._session.commit()

        message = (
            f"Processed {job.total_tracks} tracks, matched {job.matched_tracks} clean versions"
        )
        logger.info(f"Job {job.id} completed: {message}")
        await self._broadcaster.publish(
            job.id,
            JOB_COMPLETED,
            {
                **self.progress_payload(job),
                "target_playlist_id": job.target_playlist_id,
                "target_playlist_name": job.target_playlist_name,
                "message": message,
            },
        )

    # Hey future me - a playlist may contain the same track twice. track_mappings is unique on
    # (job, source_track_id), so repeats are counted as processed but only mapped once.
    async def _match_batch(
        self,
        access_token: str,
        job_id: str,
        batch: list[CatalogTrack],
        start_position: int,
        seen: set[str],
    ) -> list[TrackMappingModel]:
        result: list[TrackMappingModel] = []
        batch_seen: set[str] = set()
        for track in batch:
            if track.id in seen or track.id in batch_seen:
                continue
            batch_seen.add(track.id)
            candidate = await self._matcher.match(access_token, track) if track.is_explicit else None
            result.append(
                TrackMappingModel(
                    job_id=job_id,
                    position=start_position + len(result),
                    source_track_id=track.id,
                    source_track_name=track.name,
                    source_artist_name=track.artist,
                    is_explicit=track.is_explicit,
                    target_track_id=candidate.id if candidate else None,
                    target_track_name=candidate.name if candidate else None,
                    target_artist_name=candidate.artist if candidate else None,
                    has_clean_match=candidate is not None,
                )
            )
        return result

    # Playlist mutations are NOT retried: re-running create/add after a timeout could
    # leave a duplicate playlist or duplicate tracks behind.
    async def _create_target_playlist(
        self,
        access_token: str,
        job: CleanPlaylistJobModel,
        mappings: list[TrackMappingModel],
    ) -> None:
        track_ids = [m.playlist_track_id for m in mappings]
        playlist_id = await self._catalog.create_playlist(
            access_token,
            job.target_playlist_name,
            f"Clean version of {job.source_playlist_name}",
        )
        job.target_playlist_id = playlist_id
        await self._session.commit()

        await self._catalog.add_tracks(access_token, playlist_id, track_ids)
        logger.info(
            f"Populated target playlist {playlist_id} with {len(track_ids)} tracks "
            f"({job.matched_tracks} clean replacements)"
        )

    async def _with_retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        attempts = self._settings.batch_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except TRANSIENT_ERRORS as e:
                if attempt >= attempts:
                    raise
                delay = self._settings.batch_retry_delay_seconds * (2 ** (attempt - 1))
                if isinstance(e, RateLimitExceededError) and e.retry_after:
                    delay = max(delay, e.retry_after)
                logger.warning(
                    f"Transient error on {label} (attempt {attempt}/{attempts}): "
                    f"{e.message}. Retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover

    async def _fail(self, job_id: str, error: Exception) -> None:
        message = self._user_message(error)
        if isinstance(error, DomainException):
            logger.warning(f"Job {job_id} failed: {message}")
        else:
            logger.exception(f"Job {job_id} failed unexpectedly")

        # Drop whatever half-written batch is still pending in the session
        await self._session.rollback()
        job = await self._jobs.get(job_id, refresh=True)
        if job is None or job.is_terminal:
            return

        job.status = JobStatus.FAILED.value
        job.error_message = message
        job.completed_at = utc_now()
        await self._session.commit()

        await self._broadcaster.publish(
            job_id,
            JOB_FAILED,
            {
                "job_id": job_id,
                "error": message,
                "requires_reauth": isinstance(error, CredentialError) and error.requires_reauth,
                "processed_tracks": job.processed_tracks,
                "total_tracks": job.total_tracks,
            },
        )

    @staticmethod
    def _user_message(error: Exception) -> str:
        if isinstance(error, DomainException):
            return error.message
        return f"Unexpected error while processing playlist ({type(error).__name__})"

    @staticmethod
    def progress_payload(job: CleanPlaylistJobModel) -> dict[str, Any]:
        return {
            "job_id": job.id,
            "progress": job.progress_percent,
            "processed_tracks": job.processed_tracks,
            "total_tracks": job.total_tracks,
            "matched_tracks": job.matched_tracks,
            "current_batch": job.current_batch,
            "message": f"Processed {job.processed_tracks} of {job.total_tracks} tracks",
        }
