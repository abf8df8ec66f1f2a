"""SQLAlchemy ORM models for CleanSpot."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import sqlalchemy as sa
from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from cleanspot.domain.entities import (
    MAX_REFRESH_FAILURES,
    TOKEN_EXPIRY_BUFFER_MINUTES,
    JobStatus,
    SubscriptionStatus,
)


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! UTC datetimes come back naive.
# ALWAYS run DB datetimes through this before comparing with utc_now(), otherwise you get
# "can't compare offset-naive and offset-aware datetimes".
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# CLEAN PLAYLIST JOBS
# =============================================================================
# Hey future me - one row per "make me a clean copy of playlist X" request. Status moves
# pending → processing → completed|failed and NEVER backwards. The pending→processing hop is
# a compare-and-swap UPDATE in the repository (claim_job) - that's the per-job mutex, don't
# set status="processing" with a plain attribute assignment anywhere!
class CleanPlaylistJobModel(Base):
    """One-shot clean playlist generation job."""

    __tablename__ = "clean_playlist_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    source_playlist_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_playlist_name: Mapped[str] = mapped_column(String(500), nullable=False)
    # Null until the target playlist has been created at the very end
    target_playlist_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_playlist_name: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.PENDING.value, index=True
    )
    total_tracks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_tracks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    matched_tracks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # "Batch 3/7" - human label for the progress UI
    current_batch: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    started_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_clean_jobs_user_created", "user_id", "created_at"),
        Index("ix_clean_jobs_status_updated", "status", "updated_at"),
    )

    @property
    def progress_percent(self) -> int:
        """Processed share of total tracks (0-100)."""
        if self.total_tracks <= 0:
            return 100 if self.status == JobStatus.COMPLETED.value else 0
        return min(100, int(self.processed_tracks * 100 / self.total_tracks))

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal


class TrackMappingModel(Base):
    """Source track → clean alternative decision, one row per source track per job.

    Rows are immutable once written. The sync engine only ever APPENDS rows for
    source tracks it hasn't seen before.
    """

    __tablename__ = "track_mappings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    job_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("clean_playlist_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Source order at the time the row was written
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_track_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_track_name: Mapped[str] = mapped_column(String(500), nullable=False)
    source_artist_name: Mapped[str] = mapped_column(String(500), nullable=False)
    is_explicit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    target_track_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_track_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    target_artist_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    has_clean_match: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("job_id", "source_track_id", name="uq_track_mapping_job_source"),
    )

    @property
    def playlist_track_id(self) -> str:
        """Track id this source track contributes to the target playlist.

        The clean alternative when one was found, otherwise the source track itself.
        """
        if self.has_clean_match and self.target_track_id:
            return self.target_track_id
        return self.source_track_id


# =============================================================================
# SYNC
# =============================================================================
class SyncConfigModel(Base):
    """Recurring reconciliation of a job's target playlist against its source.

    Disabled softly via is_active=False; history stays.
    """

    __tablename__ = "sync_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clean_playlist_jobs.id"), nullable=False
    )
    source_playlist_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_playlist_id: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # daily | weekly | monthly | manual
    sync_frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="daily")
    last_synced_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_sync_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_scheduled_sync: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "job_id", name="uq_sync_config_user_job"),
        # The scheduler's one polling query
        Index("ix_sync_configs_due", "is_active", "next_scheduled_sync"),
    )


class SyncHistoryModel(Base):
    """One row per sync attempt. Append-only."""

    __tablename__ = "sync_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    sync_config_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("sync_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    started_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    tracks_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tracks_removed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tracks_unchanged: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    execution_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# =============================================================================
# MUSIC PROVIDER TOKENS
# =============================================================================
# Hey future me - access/refresh tokens are Fernet-encrypted BEFORE they reach this model
# (see CredentialVault + TokenEncryption). Nothing in this class ever sees plaintext.
# Rows are never deleted - revoke() flips is_revoked so we keep an audit trail.
class MusicTokenModel(Base):
    """Per-user, per-provider OAuth tokens (encrypted at rest)."""

    __tablename__ = "music_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    encrypted_access_token: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    scopes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    provider_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refresh_failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_refresh_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_music_token_user_provider"),
        Index("ix_music_tokens_expires", "expires_at"),
    )

    # Expired means "within 5 minutes of expiry" - a token that dies halfway through
    # a 500-track job is worse than one refreshed a little early.
    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if token is expired or about to expire (5 minute buffer)."""
        now = now or utc_now()
        buffer = timedelta(minutes=TOKEN_EXPIRY_BUFFER_MINUTES)
        return now >= ensure_utc_aware(self.expires_at) - buffer

    # Yo - a whitespace-only refresh token counts as PRESENT here. Only None and "" are
    # treated as missing. The vault never encrypts "" so the ciphertext check holds.
    def can_refresh(self) -> bool:
        """Check whether a refresh attempt is allowed."""
        return (
            self.encrypted_refresh_token is not None
            and self.encrypted_refresh_token != ""
            and not self.is_revoked
            and self.refresh_failure_count < MAX_REFRESH_FAILURES
        )

    def mark_refresh_success(self, now: datetime | None = None) -> None:
        now = now or utc_now()
        self.refresh_failure_count = 0
        self.last_refresh_at = now
        self.updated_at = now

    def mark_refresh_failure(self, now: datetime | None = None) -> None:
        self.refresh_failure_count = (self.refresh_failure_count or 0) + 1
        self.updated_at = now or utc_now()

    def has_scopes(self, required: list[str]) -> bool:
        granted = set(self.scopes or [])
        return all(scope in granted for scope in required)


# =============================================================================
# WEBHOOKS
# =============================================================================
# Hey future me - two tables, two jobs:
# - webhook_retries: events whose processing failed transiently, waiting for the sweeper
# - processed_webhook_events: the idempotency LEDGER. The unique index on event_id is the
#   ONLY serialization point - we claim an event by INSERTing and catching IntegrityError,
#   never by SELECT-then-INSERT.
class WebhookRetryModel(Base):
    """Pending re-delivery of a webhook whose processing failed transiently."""

    __tablename__ = "webhook_retries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    # Raw body exactly as received (signature is computed over these bytes)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    signature: Mapped[str] = mapped_column(Text, nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    # pending | succeeded | abandoned
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    next_retry_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("ix_webhook_retries_due", "status", "next_retry_at"),)


class ProcessedWebhookEventModel(Base):
    """Idempotency ledger: one row per finally-handled webhook event id."""

    __tablename__ = "processed_webhook_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    is_successful: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================
class UserSubscriptionModel(Base):
    """Payment processor subscription state, kept current by webhooks."""

    __tablename__ = "user_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    subscription_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    plan: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.INCOMPLETE.value
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    canceled_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def is_active(self, now: datetime | None = None) -> bool:
        """Active or trialing, and the paid period hasn't run out."""
        if self.status not in (
            SubscriptionStatus.ACTIVE.value,
            SubscriptionStatus.TRIALING.value,
        ):
            return False
        if self.current_period_end is None:
            return True
        return ensure_utc_aware(self.current_period_end) > (now or utc_now())
