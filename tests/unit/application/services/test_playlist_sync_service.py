"""Tests for SyncService: eligibility, reconciliation and failure bookkeeping."""

from datetime import timedelta

import pytest
import pytest_asyncio
from fakes import make_track
from sqlalchemy import update

from cleanspot.application.services.clean_playlist_job_service import CleanPlaylistJobService
from cleanspot.application.services.playlist_sync_service import SyncService, parse_frequency
from cleanspot.application.services.subscription_service import SubscriptionService
from cleanspot.domain.entities import JobStatus, SubscriptionStatus, SyncFrequency, SyncStatus
from cleanspot.domain.exceptions import (
    EntityNotFoundException,
    ExternalServiceError,
    InvalidStateException,
    ValidationException,
)
from cleanspot.infrastructure.observability.metrics import get_sync_metrics
from cleanspot.infrastructure.persistence.models import (
    CleanPlaylistJobModel,
    SyncConfigModel,
    UserSubscriptionModel,
    ensure_utc_aware,
    utc_now,
)
from cleanspot.infrastructure.persistence.repositories import TrackMappingRepository


def _set_source(catalog, tracks) -> None:
    catalog.contents["src"] = list(tracks)
    for track in tracks:
        catalog.known[track.id] = track


@pytest.fixture
def jobs(session, vault, catalog, broadcaster, settings) -> CleanPlaylistJobService:
    return CleanPlaylistJobService(session, vault, catalog, broadcaster, settings.jobs)


@pytest.fixture
def service(session, vault, catalog, settings) -> SyncService:
    return SyncService(session, vault, catalog, SubscriptionService(session), settings.sync)


@pytest_asyncio.fixture
async def completed_job(jobs, catalog, subscribed_user) -> CleanPlaylistJobModel:
    """Source c1, e1 (clean e1c), c2, e3 (no clean) → target c1, e1c, c2, e3."""
    catalog.add_playlist(
        "src",
        [
            make_track("c1"),
            make_track("e1", explicit=True),
            make_track("c2"),
            make_track("e3", explicit=True),
        ],
    )
    catalog.add_clean("e1", "e1c")
    job = await jobs.create_job(subscribed_user, "src")
    await jobs.process_job(job.id)
    return await jobs.refresh_job(job.id)


class TestEnableSync:
    """Turning auto-sync on."""

    @pytest.mark.asyncio
    async def test_enables_completed_job(self, service, completed_job, subscribed_user) -> None:
        """A completed job gets an active daily config."""
        config = await service.enable_sync(completed_job.id, subscribed_user)

        assert config is not None
        assert config.is_active is True
        assert config.sync_frequency == SyncFrequency.DAILY.value
        assert config.source_playlist_id == "src"
        assert config.target_playlist_id == completed_job.target_playlist_id
        assert ensure_utc_aware(config.next_scheduled_sync) > utc_now()

    @pytest.mark.asyncio
    async def test_enable_is_idempotent_and_reactivates(
        self, service, completed_job, subscribed_user
    ) -> None:
        """Enabling again returns the same config, reactivated."""
        first = await service.enable_sync(completed_job.id, subscribed_user, "weekly")
        assert await service.disable_sync(first.id, subscribed_user) is True
        assert first.is_active is False

        second = await service.enable_sync(completed_job.id, subscribed_user)

        assert second.id == first.id
        assert second.is_active is True
        assert second.sync_frequency == SyncFrequency.WEEKLY.value
        assert len(await service.get_user_configs(subscribed_user)) == 1

    @pytest.mark.asyncio
    async def test_requires_active_subscription(
        self, session, service, completed_job, subscribed_user
    ) -> None:
        """Without an active subscription nothing is enabled."""
        await session.execute(
            update(UserSubscriptionModel).values(status=SubscriptionStatus.CANCELED.value)
        )
        await session.commit()
        assert await service.enable_sync(completed_job.id, subscribed_user) is None

    @pytest.mark.asyncio
    async def test_foreign_job_is_not_eligible(self, service, completed_job) -> None:
        """Users can't sync someone else's job."""
        assert await service.enable_sync(completed_job.id, "someone-else") is None

    @pytest.mark.asyncio
    async def test_unfinished_job_is_not_eligible(
        self, jobs, service, catalog, subscribed_user
    ) -> None:
        """Only completed jobs can be synced."""
        catalog.add_playlist("other", [make_track("e1", explicit=True)])
        job = await jobs.create_job(subscribed_user, "other")
        assert job.status == JobStatus.PENDING.value
        assert await service.enable_sync(job.id, subscribed_user) is None

    @pytest.mark.asyncio
    async def test_job_without_target_playlist_is_not_eligible(
        self, jobs, service, catalog, subscribed_user
    ) -> None:
        """A job that created no playlist has nothing to sync."""
        catalog.add_playlist("plain", [make_track("a")])
        job = await jobs.create_job(subscribed_user, "plain")
        await jobs.process_job(job.id)
        assert await service.enable_sync(job.id, subscribed_user) is None

    @pytest.mark.asyncio
    async def test_unknown_frequency_is_rejected(
        self, service, completed_job, subscribed_user
    ) -> None:
        """Bad frequency names raise ValidationException."""
        with pytest.raises(ValidationException):
            await service.enable_sync(completed_job.id, subscribed_user, "hourly")

    @pytest.mark.asyncio
    async def test_concurrent_enable_returns_the_winning_config(
        self, db, service, completed_job, subscribed_user, monkeypatch
    ) -> None:
        """Two enables for the same job: the loser gets the winner's row, not a 500."""
        job_id = completed_job.id
        source, target = completed_job.source_playlist_id, completed_job.target_playlist_id
        original_lookup = service._configs.get_by_user_and_job
        winner_ids: list[str] = []

        async def lookup_then_lose_race(user_id: str, lookup_job_id: str):
            if winner_ids:
                return await original_lookup(user_id, lookup_job_id)
            async with db.session_factory() as other:
                winner = SyncConfigModel(
                    user_id=user_id,
                    job_id=lookup_job_id,
                    source_playlist_id=source,
                    target_playlist_id=target,
                    is_active=True,
                    sync_frequency=SyncFrequency.DAILY.value,
                )
                other.add(winner)
                await other.commit()
                winner_ids.append(winner.id)
            return None

        monkeypatch.setattr(service._configs, "get_by_user_and_job", lookup_then_lose_race)

        config = await service.enable_sync(job_id, subscribed_user, "weekly")

        assert config is not None
        assert config.id == winner_ids[0]
        assert config.sync_frequency == SyncFrequency.DAILY.value
        assert len(await service.get_user_configs(subscribed_user)) == 1


class TestSync:
    """One reconciliation run."""

    @pytest.mark.asyncio
    async def test_first_sync_removes_then_adds(
        self, session, service, catalog, completed_job, subscribed_user
    ) -> None:
        """Stale tracks are removed before new ones are added."""
        config = await service.enable_sync(completed_job.id, subscribed_user)
        _set_source(
            catalog,
            [
                make_track("c1"),
                make_track("e1", explicit=True),
                make_track("e3", explicit=True),
                make_track("e4", explicit=True),
                make_track("c5"),
            ],
        )
        catalog.add_clean("e4", "e4c")

        history = await service.sync(config.id)

        assert history.status == SyncStatus.COMPLETED.value
        assert (history.tracks_added, history.tracks_removed, history.tracks_unchanged) == (2, 1, 3)
        assert history.completed_at is not None
        assert catalog.removed == [["c2"]]
        assert catalog.added[-1] == ["e4c", "c5"]
        assert catalog.track_ids(config.target_playlist_id) == ["c1", "e1c", "e3", "e4c", "c5"]

        mappings = await TrackMappingRepository(session).list_for_job(completed_job.id)
        assert [m.source_track_id for m in mappings][-2:] == ["e4", "c5"]

        assert config.last_sync_status == SyncStatus.COMPLETED.value
        assert config.last_synced_at is not None
        assert config.last_sync_error is None

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(
        self, service, catalog, completed_job, subscribed_user
    ) -> None:
        """Nothing changed upstream, nothing changes downstream."""
        config = await service.enable_sync(completed_job.id, subscribed_user)
        _set_source(catalog, catalog.contents["src"] + [make_track("c9")])
        await service.sync(config.id)
        catalog.added.clear()

        history = await service.sync(config.id)

        assert (history.tracks_added, history.tracks_removed) == (0, 0)
        assert history.tracks_unchanged == 5
        assert catalog.added == []
        assert len(await service.get_history(config.id, subscribed_user)) == 2

    @pytest.mark.asyncio
    async def test_failed_run_is_recorded_and_schedule_moves_on(
        self, service, catalog, completed_job, subscribed_user
    ) -> None:
        """Failures are recorded and the config stays scheduled."""
        config = await service.enable_sync(completed_job.id, subscribed_user)
        catalog.fail("list_tracks", ExternalServiceError("Spotify API error: 503"))

        history = await service.sync(config.id)

        assert history.status == SyncStatus.FAILED.value
        assert history.error_message == "Spotify API error: 503"
        assert config.is_active is True
        assert config.last_sync_status == SyncStatus.FAILED.value
        assert config.last_sync_error == "Spotify API error: 503"
        assert ensure_utc_aware(config.next_scheduled_sync) > utc_now()

    @pytest.mark.asyncio
    async def test_unknown_config_raises(self, service) -> None:
        """Syncing a missing config is EntityNotFound."""
        with pytest.raises(EntityNotFoundException):
            await service.sync("missing")


class TestManualSyncAndConfig:
    """Manual triggers and config updates."""

    @pytest.mark.asyncio
    async def test_manual_sync_runs(self, service, completed_job, subscribed_user) -> None:
        """A manual trigger runs a sync now."""
        config = await service.enable_sync(completed_job.id, subscribed_user)
        history = await service.trigger_manual_sync(config.id, subscribed_user)
        assert history.status == SyncStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_manual_sync_on_disabled_config(
        self, service, completed_job, subscribed_user
    ) -> None:
        """Disabled configs can't be triggered."""
        config = await service.enable_sync(completed_job.id, subscribed_user)
        await service.disable_sync(config.id, subscribed_user)
        with pytest.raises(InvalidStateException):
            await service.trigger_manual_sync(config.id, subscribed_user)

    @pytest.mark.asyncio
    async def test_manual_sync_on_foreign_config(
        self, service, completed_job, subscribed_user
    ) -> None:
        """Another user's config is not found and can't be disabled."""
        config = await service.enable_sync(completed_job.id, subscribed_user)
        with pytest.raises(EntityNotFoundException):
            await service.trigger_manual_sync(config.id, "someone-else")
        assert await service.disable_sync(config.id, "someone-else") is False

    @pytest.mark.asyncio
    async def test_update_frequency(self, service, completed_job, subscribed_user) -> None:
        """Manual clears the schedule, weekly sets it a week out."""
        config = await service.enable_sync(completed_job.id, subscribed_user)

        updated = await service.update_frequency(config.id, subscribed_user, "Manual")
        assert updated.sync_frequency == SyncFrequency.MANUAL.value
        assert updated.next_scheduled_sync is None

        updated = await service.update_frequency(config.id, subscribed_user, "weekly")
        assert ensure_utc_aware(updated.next_scheduled_sync) > utc_now() + timedelta(days=6)

    @pytest.mark.asyncio
    async def test_due_for_sync(self, session, service, completed_job, subscribed_user) -> None:
        """Only active configs past their time are due."""
        config = await service.enable_sync(completed_job.id, subscribed_user)
        assert await service.due_for_sync() == []

        config.next_scheduled_sync = utc_now() - timedelta(minutes=1)
        await session.commit()
        assert [c.id for c in await service.due_for_sync()] == [config.id]

        await service.disable_sync(config.id, subscribed_user)
        assert await service.due_for_sync() == []

    def test_parse_frequency(self) -> None:
        """Parsing is case and whitespace tolerant."""
        assert parse_frequency(" Monthly ") is SyncFrequency.MONTHLY
        with pytest.raises(ValidationException):
            parse_frequency("yearly")


class TestSyncMetrics:
    """Counters recorded by SyncService, read back from the global collector."""

    @pytest.mark.asyncio
    async def test_successful_sync_is_counted(
        self, service, catalog, completed_job, subscribed_user
    ) -> None:
        """A completed run counts started, completed, tracks and duration."""
        config = await service.enable_sync(completed_job.id, subscribed_user)
        _set_source(catalog, catalog.contents["src"] + [make_track("c9")])

        await service.sync(config.id)

        metrics = get_sync_metrics()
        assert metrics.counter_value("sync_started_total") == 1
        assert metrics.counter_value("sync_completed_total") == 1
        assert metrics.counter_value("sync_failed_total") == 0
        assert metrics.counter_value("sync_tracks_added_total") == 1
        assert metrics.counter_value("sync_tracks_removed_total") == 0
        assert metrics.get_summary()["histograms"]["sync_duration_seconds"]["count"] == 1
        assert "cleanspot_sync_duration_seconds_count{status=\"completed\"} 1" in (
            metrics.to_prometheus_format()
        )

    @pytest.mark.asyncio
    async def test_failed_sync_is_counted(
        self, service, catalog, completed_job, subscribed_user
    ) -> None:
        """A failed run counts started and failed, never completed."""
        config = await service.enable_sync(completed_job.id, subscribed_user)
        catalog.fail("list_tracks", ExternalServiceError("Spotify API error: 503"))

        await service.sync(config.id)

        metrics = get_sync_metrics()
        assert metrics.counter_value("sync_started_total") == 1
        assert metrics.counter_value("sync_failed_total") == 1
        assert metrics.counter_value("sync_completed_total") == 0
        assert "cleanspot_sync_duration_seconds_count{status=\"failed\"} 1" in (
            metrics.to_prometheus_format()
        )

    @pytest.mark.asyncio
    async def test_subscription_checks_are_counted(
        self, session, service, completed_job, subscribed_user
    ) -> None:
        """Every subscription check is labelled active or inactive."""
        await service.enable_sync(completed_job.id, subscribed_user)
        await session.execute(
            update(UserSubscriptionModel).values(status=SubscriptionStatus.CANCELED.value)
        )
        await session.commit()
        await service.enable_sync(completed_job.id, subscribed_user)

        metrics = get_sync_metrics()
        assert metrics.counter_value("subscription_validations_total", result="active") == 1
        assert metrics.counter_value("subscription_validations_total", result="inactive") == 1
