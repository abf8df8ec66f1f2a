"""Playlist Sync Service - keeps a clean playlist in step with its source.

Hey future me - a sync config is born from a COMPLETED job that actually produced a target
playlist. From then on every run (scheduled or "sync now") does the same thing:

    1. history row RUNNING (committed, so a crash still leaves a trace)
    2. source tracks + target tracks from the catalog
    3. match source tracks we've never seen and APPEND mapping rows to the original job
    4. diff on clean identity (PlaylistDeltaCalculator)
    5. remove, then add
    6. history COMPLETED/FAILED + config bookkeeping + next_scheduled_sync

sync() never raises for a failed run. The failure is the history row. The config stays
active and next_scheduled_sync still moves forward, so one broken run doesn't stop the
schedule (and doesn't hot-loop the scheduler either).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.application.services.credential_vault import CredentialVault
from cleanspot.application.services.playlist_delta import (
    PlaylistDelta,
    PlaylistDeltaCalculator,
)
from cleanspot.application.services.sync_time import SyncTimeCalculator
from cleanspot.application.services.track_matching import TrackMatcher
from cleanspot.config.settings import SyncSettings
from cleanspot.domain.entities import (
    DEFAULT_PROVIDER,
    JobStatus,
    SyncFrequency,
    SyncStatus,
)
from cleanspot.domain.exceptions import (
    DomainException,
    EntityNotFoundException,
    InvalidStateException,
    ValidationException,
)
from cleanspot.domain.ports import CatalogTrack, ICatalogProvider, ISubscriptionChecker
from cleanspot.infrastructure.observability.metrics import get_sync_metrics
from cleanspot.infrastructure.persistence.models import (
    SyncConfigModel,
    SyncHistoryModel,
    TrackMappingModel,
    utc_now,
)
from cleanspot.infrastructure.persistence.repositories import (
    CleanPlaylistJobRepository,
    SyncConfigRepository,
    SyncHistoryRepository,
    TrackMappingRepository,
)

logger = logging.getLogger(__name__)


def parse_frequency(frequency: str) -> SyncFrequency:
    """Validate a user-supplied frequency.

    Raises:
        ValidationException: Not one of daily/weekly/monthly/manual
    """
    try:
        return SyncFrequency(frequency.strip().lower())
    except ValueError as e:
        allowed = ", ".join(f.value for f in SyncFrequency)
        raise ValidationException(
            f"Unknown sync frequency '{frequency}' (allowed: {allowed})"
        ) from e


class SyncService:
    """Enables, runs and manages playlist sync configs."""

    def __init__(
        self,
        session: AsyncSession,
        vault: CredentialVault,
        catalog: ICatalogProvider,
        subscriptions: ISubscriptionChecker,
        settings: SyncSettings | None = None,
        provider: str = DEFAULT_PROVIDER,
    ) -> None:
        self._session = session
        self._vault = vault
        self._catalog = catalog
        self._matcher = TrackMatcher(catalog)
        self._subscriptions = subscriptions
        self._settings = settings or SyncSettings()
        self._provider = provider
        self._time = SyncTimeCalculator()
        self._delta = PlaylistDeltaCalculator()
        self._jobs = CleanPlaylistJobRepository(session)
        self._configs = SyncConfigRepository(session)
        self._history = SyncHistoryRepository(session)
        self._mappings = TrackMappingRepository(session)

    # =========================================================================
    # Config management
    # =========================================================================

    async def enable_sync(
        self, job_id: str, user_id: str, frequency: str | None = None
    ) -> SyncConfigModel | None:
        """Create (or re-activate) the sync config for a completed job.

        Returns:
            The active config, or None when the job isn't eligible (missing, foreign,
            not completed, no target playlist) or the user has no active subscription
        """
        parsed = parse_frequency(frequency or self._settings.default_frequency)

        if not await self._has_subscription(user_id):
            logger.info(f"User {user_id} has no active subscription, sync not enabled")
            return None

        job = await self._jobs.get(job_id)
        if (
            job is None
            or job.user_id != user_id
            or job.status != JobStatus.COMPLETED.value
            or not job.target_playlist_id
        ):
            logger.info(f"Job {job_id} is not eligible for sync (user {user_id})")
            return None

        existing = await self._configs.get_by_user_and_job(user_id, job_id)
        if existing is not None:
            if not existing.is_active:
                existing.is_active = True
                existing.next_scheduled_sync = self._time.next_sync_time(
                    existing.sync_frequency
                )
                await self._session.commit()
                logger.info(f"Re-enabled sync config {existing.id} for job {job_id}")
            return existing

        config = SyncConfigModel(
            user_id=user_id,
            job_id=job.id,
            source_playlist_id=job.source_playlist_id,
            target_playlist_id=job.target_playlist_id,
            is_active=True,
            sync_frequency=parsed.value,
            next_scheduled_sync=self._time.next_sync_time(parsed.value),
        )
        try:
            await self._configs.add(config)
            await self._session.commit()
        except IntegrityError:
            # A concurrent enable for the same (user, job) won the unique constraint
            await self._session.rollback()
            winner = await self._configs.get_by_user_and_job(user_id, job_id)
            if winner is None:
                raise
            logger.info(f"Sync config for job {job_id} was enabled concurrently")
            return winner
        logger.info(f"Enabled {parsed.value} sync config {config.id} for job {job_id}")
        return config

    async def disable_sync(self, config_id: str, user_id: str) -> bool:
        """Soft-disable a config. History is kept.

        Returns:
            False if the config doesn't exist or belongs to someone else
        """
        config = await self._configs.get(config_id)
        if config is None or config.user_id != user_id:
            return False
        if config.is_active:
            config.is_active = False
            await self._session.commit()
            logger.info(f"Disabled sync config {config_id}")
        return True

    async def update_frequency(
        self, config_id: str, user_id: str, frequency: str
    ) -> SyncConfigModel:
        parsed = parse_frequency(frequency)
        config = await self._configs.get_for_user(config_id, user_id)
        config.sync_frequency = parsed.value
        config.next_scheduled_sync = self._time.next_sync_time(parsed.value)
        await self._session.commit()
        return config

    async def get_user_configs(self, user_id: str) -> Sequence[SyncConfigModel]:
        return await self._configs.list_for_user(user_id)

    async def get_history(
        self, config_id: str, user_id: str, limit: int = 20
    ) -> Sequence[SyncHistoryModel]:
        await self._configs.get_for_user(config_id, user_id)
        return await self._history.list_for_config(config_id, limit)

    async def due_for_sync(
        self, now: datetime | None = None, limit: int | None = None
    ) -> Sequence[SyncConfigModel]:
        """Active configs whose next_scheduled_sync has passed, oldest first."""
        return await self._configs.list_due(now or utc_now(), limit)

    async def owner_has_subscription(self, config: SyncConfigModel) -> bool:
        return await self._has_subscription(config.user_id)

    async def _has_subscription(self, user_id: str) -> bool:
        active = await self._subscriptions.is_active(user_id)
        get_sync_metrics().inc_subscription_validation(active)
        return active

    async def deactivate(self, config: SyncConfigModel, reason: str) -> None:
        """Switch a config off on the system's behalf (e.g. subscription lapsed)."""
        config.is_active = False
        config.last_sync_error = reason
        await self._session.commit()
        logger.warning(f"Deactivated sync config {config.id}: {reason}")

    # =========================================================================
    # Running a sync
    # =========================================================================

    async def trigger_manual_sync(self, config_id: str, user_id: str) -> SyncHistoryModel:
        """Manual "sync now" from the user.

        Raises:
            EntityNotFoundException: Config missing or foreign
            InvalidStateException: Config disabled or subscription inactive
        """
        config = await self._configs.get_for_user(config_id, user_id)
        if not config.is_active:
            raise InvalidStateException("Sync is disabled for this playlist")
        if not await self._has_subscription(user_id):
            raise InvalidStateException("An active subscription is required to sync")

        logger.info(f"Manual sync requested for config {config_id}")
        return await self.sync(config.id)

    async def sync(self, config_id: str) -> SyncHistoryModel:
        """Run one reconciliation. Failures end up in the returned history row."""
        config = await self._configs.get(config_id)
        if config is None:
            raise EntityNotFoundException("SyncConfig", config_id)

        started = time.perf_counter()
        history = SyncHistoryModel(
            sync_config_id=config.id,
            started_at=utc_now(),
            status=SyncStatus.RUNNING.value,
        )
        await self._history.add(history)
        await self._session.commit()
        get_sync_metrics().inc_sync_started()
        logger.info(f"Sync {history.id} started for config {config.id}")

        try:
            delta = await self._reconcile(config)
        except Exception as e:
            await self._record_failure(config, history, e, started)
            return history

        now = utc_now()
        history.status = SyncStatus.COMPLETED.value
        history.completed_at = now
        history.tracks_added = len(delta.to_add)
        history.tracks_removed = len(delta.to_remove)
        history.tracks_unchanged = len(delta.unchanged)
        history.execution_time_ms = self._elapsed_ms(started)

        config.last_synced_at = now
        config.last_sync_status = SyncStatus.COMPLETED.value
        config.last_sync_error = None
        config.next_scheduled_sync = self._time.next_sync_time(config.sync_frequency, now)
        await self._session.commit()

        metrics = get_sync_metrics()
        metrics.inc_sync_completed(history.tracks_added, history.tracks_removed)
        metrics.observe_sync_duration(
            history.execution_time_ms / 1000, status=SyncStatus.COMPLETED.value
        )
        logger.info(
            f"Sync {history.id} completed: +{history.tracks_added} "
            f"-{history.tracks_removed} ={history.tracks_unchanged} "
            f"in {history.execution_time_ms}ms"
        )
        return history

    async def _reconcile(self, config: SyncConfigModel) -> PlaylistDelta:
        access_token = await self._vault.get_valid_access_token(config.user_id, self._provider)
        source = await self._catalog.list_tracks(access_token, config.source_playlist_id)
        target = await self._catalog.list_tracks(access_token, config.target_playlist_id)

        mappings = list(await self._mappings.list_for_job(config.job_id))
        new_tracks = self._delta.find_new_tracks(source, mappings)
        if new_tracks:
            mappings.extend(await self._map_new_tracks(access_token, config, new_tracks))

        delta = self._delta.calculate(source, [t.id for t in target], mappings)

        # Removals first, then additions
        if delta.to_remove:
            await self._catalog.remove_tracks(
                access_token, config.target_playlist_id, delta.to_remove
            )
        if delta.to_add:
            await self._catalog.add_tracks(access_token, config.target_playlist_id, delta.to_add)
        return delta

    async def _map_new_tracks(
        self,
        access_token: str,
        config: SyncConfigModel,
        new_tracks: list[CatalogTrack],
    ) -> list[TrackMappingModel]:
        position = await self._mappings.next_position(config.job_id)
        new_mappings: list[TrackMappingModel] = []
        for offset, track in enumerate(new_tracks):
            candidate = await self._matcher.match(access_token, track)
            new_mappings.append(
                TrackMappingModel(
                    job_id=config.job_id,
                    position=position + offset,
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
        await self._mappings.add_many(new_mappings)
        await self._session.commit()
        logger.info(
            f"Mapped {len(new_mappings)} new source tracks for config {config.id} "
            f"({sum(1 for m in new_mappings if m.has_clean_match)} clean matches)"
        )
        return new_mappings

    async def _record_failure(
        self,
        config: SyncConfigModel,
        history: SyncHistoryModel,
        error: Exception,
        started: float,
    ) -> None:
        if isinstance(error, DomainException):
            message = error.message
            logger.warning(f"Sync {history.id} for config {config.id} failed: {message}")
        else:
            message = f"Unexpected error during sync ({type(error).__name__})"
            logger.exception(f"Sync {history.id} for config {config.id} failed unexpectedly")

        # rollback() expires everything - reload before touching attributes again
        await self._session.rollback()
        await self._session.refresh(history)
        await self._session.refresh(config)

        now = utc_now()
        history.status = SyncStatus.FAILED.value
        history.completed_at = now
        history.error_message = message
        history.execution_time_ms = self._elapsed_ms(started)

        config.last_synced_at = now
        config.last_sync_status = SyncStatus.FAILED.value
        config.last_sync_error = message
        config.next_scheduled_sync = self._time.next_sync_time(config.sync_frequency, now)
        await self._session.commit()

        metrics = get_sync_metrics()
        metrics.inc_sync_failed()
        metrics.observe_sync_duration(
            history.execution_time_ms / 1000, status=SyncStatus.FAILED.value
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
