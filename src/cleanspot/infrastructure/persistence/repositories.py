"""Repository implementations for CleanSpot persistence.

Hey future me - repositories here hand back ORM models directly (same approach as the
token repository pattern: small tables, no separate domain entity layer). They NEVER
commit - the calling service owns the transaction boundary, because the job engine
commits per batch and the webhook layer needs insert+rollback control.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.domain.entities import JobStatus, WebhookRetryStatus
from cleanspot.domain.exceptions import EntityNotFoundException

from .models import (
    CleanPlaylistJobModel,
    MusicTokenModel,
    ProcessedWebhookEventModel,
    SyncConfigModel,
    SyncHistoryModel,
    TrackMappingModel,
    UserSubscriptionModel,
    WebhookRetryModel,
    utc_now,
)


class CleanPlaylistJobRepository:
    """Repository for clean playlist jobs."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, job: CleanPlaylistJobModel) -> CleanPlaylistJobModel:
        self.session.add(job)
        await self.session.flush()
        return job

    async def get(self, job_id: str, refresh: bool = False) -> CleanPlaylistJobModel | None:
        """Get job by id.

        Args:
            job_id: Job id
            refresh: Reload from DB even if the session already holds the row
                (needed after bulk UPDATEs like claim())
        """
        return await self.session.get(
            CleanPlaylistJobModel, job_id, populate_existing=refresh
        )

    async def get_for_user(self, job_id: str, user_id: str) -> CleanPlaylistJobModel:
        """Get a job owned by user_id.

        Raises:
            EntityNotFoundException: Job missing or owned by someone else
        """
        job = await self.get(job_id)
        if job is None or job.user_id != user_id:
            raise EntityNotFoundException("CleanPlaylistJob", job_id)
        return job

    async def list_for_user(
        self, user_id: str, limit: int = 50
    ) -> Sequence[CleanPlaylistJobModel]:
        stmt = (
            select(CleanPlaylistJobModel)
            .where(CleanPlaylistJobModel.user_id == user_id)
            .order_by(CleanPlaylistJobModel.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    # Hey future me - THIS is the per-job mutex! Compare-and-swap on status: only the caller
    # whose UPDATE actually flips pending→processing gets rowcount=1. A second worker (or a
    # duplicate enqueue) sees rowcount=0 and must back off. No locks, no lease table.
    async def claim(self, job_id: str) -> bool:
        """Atomically transition a job from PENDING to PROCESSING.

        Returns:
            True if this caller won the claim, False otherwise
        """
        now = utc_now()
        result = await self.session.execute(
            update(CleanPlaylistJobModel)
            .where(
                CleanPlaylistJobModel.id == job_id,
                CleanPlaylistJobModel.status == JobStatus.PENDING.value,
            )
            .values(
                status=JobStatus.PROCESSING.value,
                started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def list_ids_by_status(self, status: JobStatus) -> list[str]:
        stmt = (
            select(CleanPlaylistJobModel.id)
            .where(CleanPlaylistJobModel.status == status.value)
            .order_by(CleanPlaylistJobModel.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def fail_stale_processing(self, older_than: timedelta, message: str) -> int:
        """Fail PROCESSING jobs whose last update is older than the threshold.

        Returns:
            Number of jobs failed
        """
        now = utc_now()
        result = await self.session.execute(
            update(CleanPlaylistJobModel)
            .where(
                CleanPlaylistJobModel.status == JobStatus.PROCESSING.value,
                CleanPlaylistJobModel.updated_at < now - older_than,
            )
            .values(
                status=JobStatus.FAILED.value,
                error_message=message,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class TrackMappingRepository:
    """Repository for per-job track mappings (append-only)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add_many(self, mappings: Sequence[TrackMappingModel]) -> None:
        self.session.add_all(list(mappings))
        await self.session.flush()

    async def list_for_job(self, job_id: str) -> Sequence[TrackMappingModel]:
        stmt = (
            select(TrackMappingModel)
            .where(TrackMappingModel.job_id == job_id)
            .order_by(TrackMappingModel.position)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def next_position(self, job_id: str) -> int:
        stmt = select(func.max(TrackMappingModel.position)).where(
            TrackMappingModel.job_id == job_id
        )
        current = (await self.session.execute(stmt)).scalar_one_or_none()
        return 0 if current is None else current + 1


class SyncConfigRepository:
    """Repository for sync configs."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, config: SyncConfigModel) -> SyncConfigModel:
        self.session.add(config)
        await self.session.flush()
        return config

    async def get(self, config_id: str) -> SyncConfigModel | None:
        return await self.session.get(SyncConfigModel, config_id)

    async def get_for_user(self, config_id: str, user_id: str) -> SyncConfigModel:
        """Get a config owned by user_id.

        Raises:
            EntityNotFoundException: Config missing or owned by someone else
        """
        config = await self.get(config_id)
        if config is None or config.user_id != user_id:
            raise EntityNotFoundException("SyncConfig", config_id)
        return config

    async def get_by_user_and_job(
        self, user_id: str, job_id: str
    ) -> SyncConfigModel | None:
        stmt = select(SyncConfigModel).where(
            SyncConfigModel.user_id == user_id,
            SyncConfigModel.job_id == job_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> Sequence[SyncConfigModel]:
        stmt = (
            select(SyncConfigModel)
            .where(SyncConfigModel.user_id == user_id)
            .order_by(SyncConfigModel.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_active(self) -> int:
        stmt = select(func.count()).select_from(SyncConfigModel).where(
            SyncConfigModel.is_active.is_(True)
        )
        return int((await self.session.execute(stmt)).scalar_one())

    # Hey future me - the scheduler's ONLY polling query. Backed by ix_sync_configs_due.
    async def list_due(self, now: datetime, limit: int | None = None) -> Sequence[SyncConfigModel]:
        stmt = (
            select(SyncConfigModel)
            .where(
                SyncConfigModel.is_active.is_(True),
                SyncConfigModel.next_scheduled_sync.is_not(None),
                SyncConfigModel.next_scheduled_sync <= now,
            )
            .order_by(SyncConfigModel.next_scheduled_sync)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()


class SyncHistoryRepository:
    """Repository for sync history (append-only)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, history: SyncHistoryModel) -> SyncHistoryModel:
        self.session.add(history)
        await self.session.flush()
        return history

    async def get(self, history_id: str) -> SyncHistoryModel | None:
        return await self.session.get(SyncHistoryModel, history_id)

    async def list_for_config(
        self, config_id: str, limit: int = 20
    ) -> Sequence[SyncHistoryModel]:
        stmt = (
            select(SyncHistoryModel)
            .where(SyncHistoryModel.sync_config_id == config_id)
            .order_by(SyncHistoryModel.started_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class MusicTokenRepository:
    """Repository for encrypted provider tokens."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str, provider: str) -> MusicTokenModel | None:
        """Get token row regardless of revocation (callers decide)."""
        stmt = select(MusicTokenModel).where(
            MusicTokenModel.user_id == user_id,
            MusicTokenModel.provider == provider,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, token: MusicTokenModel) -> MusicTokenModel:
        self.session.add(token)
        await self.session.flush()
        return token


class WebhookRetryRepository:
    """Repository for webhook retry rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, retry_id: str) -> WebhookRetryModel | None:
        # populate_existing: rows may be expired by a rollback of an earlier retry
        return await self.session.get(WebhookRetryModel, retry_id, populate_existing=True)

    async def get_by_event_id(self, event_id: str) -> WebhookRetryModel | None:
        stmt = select(WebhookRetryModel).where(WebhookRetryModel.event_id == event_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, retry: WebhookRetryModel) -> WebhookRetryModel:
        self.session.add(retry)
        await self.session.flush()
        return retry

    async def list_due(self, now: datetime, limit: int = 50) -> Sequence[WebhookRetryModel]:
        stmt = (
            select(WebhookRetryModel)
            .where(
                WebhookRetryModel.status == WebhookRetryStatus.PENDING.value,
                WebhookRetryModel.next_retry_at <= now,
            )
            .order_by(WebhookRetryModel.next_retry_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class ProcessedWebhookEventRepository:
    """Idempotency ledger for webhook events."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, event_id: str) -> bool:
        stmt = select(ProcessedWebhookEventModel.id).where(
            ProcessedWebhookEventModel.event_id == event_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get(self, event_id: str) -> ProcessedWebhookEventModel | None:
        stmt = select(ProcessedWebhookEventModel).where(
            ProcessedWebhookEventModel.event_id == event_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Listen up - this flushes immediately so a concurrent duplicate surfaces as
    # IntegrityError HERE (unique index on event_id), inside the caller's transaction.
    # The caller rolls back and treats it as "someone else already handled it".
    async def record(
        self,
        event_id: str,
        event_type: str,
        is_successful: bool,
        error_message: str | None = None,
    ) -> ProcessedWebhookEventModel:
        entry = ProcessedWebhookEventModel(
            event_id=event_id,
            event_type=event_type,
            is_successful=is_successful,
            error_message=error_message,
            processed_at=utc_now(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry


class UserSubscriptionRepository:
    """Repository for user subscriptions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_user(self, user_id: str) -> UserSubscriptionModel | None:
        stmt = select(UserSubscriptionModel).where(UserSubscriptionModel.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_customer_id(self, customer_id: str) -> UserSubscriptionModel | None:
        stmt = select(UserSubscriptionModel).where(
            UserSubscriptionModel.customer_id == customer_id
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_by_subscription_id(
        self, subscription_id: str
    ) -> UserSubscriptionModel | None:
        stmt = select(UserSubscriptionModel).where(
            UserSubscriptionModel.subscription_id == subscription_id
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def add(self, subscription: UserSubscriptionModel) -> UserSubscriptionModel:
        self.session.add(subscription)
        await self.session.flush()
        return subscription
