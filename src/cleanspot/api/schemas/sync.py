"""API schemas for playlist sync."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Frequency = Literal["daily", "weekly", "monthly", "manual"]


class EnableSyncRequest(BaseModel):
    """Optional body for enabling sync."""

    frequency: Frequency | None = Field(default=None, description="Defaults to daily")


class UpdateFrequencyRequest(BaseModel):
    frequency: Frequency


class SyncConfigResponse(BaseModel):
    """Sync configuration of one clean playlist."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    source_playlist_id: str
    target_playlist_id: str
    is_active: bool
    sync_frequency: str
    last_synced_at: datetime | None = None
    last_sync_status: str | None = None
    last_sync_error: str | None = None
    next_scheduled_sync: datetime | None = None
    created_at: datetime


class SyncHistoryResponse(BaseModel):
    """One sync attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    sync_config_id: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    tracks_added: int
    tracks_removed: int
    tracks_unchanged: int
    error_message: str | None = None
    execution_time_ms: int
