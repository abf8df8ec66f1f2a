"""API schemas for clean playlist jobs."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CreateJobRequest(BaseModel):
    """Request to create a clean copy of a playlist."""

    source_playlist_id: str = Field(..., min_length=1, description="Provider playlist id")
    target_playlist_name: str | None = Field(
        default=None,
        max_length=200,
        description="Name for the clean playlist (defaults to '<source> (Clean)')",
    )


class JobResponse(BaseModel):
    """Clean playlist job state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    source_playlist_id: str
    source_playlist_name: str
    target_playlist_id: str | None = None
    target_playlist_name: str
    status: str
    total_tracks: int
    processed_tracks: int
    matched_tracks: int
    progress_percent: int = Field(description="Processed share of total tracks (0-100)")
    current_batch: str | None = None
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class TrackMappingResponse(BaseModel):
    """One source track and the clean alternative chosen for it (if any)."""

    model_config = ConfigDict(from_attributes=True)

    position: int
    source_track_id: str
    source_track_name: str
    source_artist_name: str
    is_explicit: bool
    has_clean_match: bool
    target_track_id: str | None = None
    target_track_name: str | None = None
    target_artist_name: str | None = None
