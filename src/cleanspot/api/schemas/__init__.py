"""Pydantic request/response models for the HTTP API."""

from cleanspot.api.schemas.jobs import CreateJobRequest, JobResponse, TrackMappingResponse
from cleanspot.api.schemas.sync import (
    EnableSyncRequest,
    SyncConfigResponse,
    SyncHistoryResponse,
    UpdateFrequencyRequest,
)

__all__ = [
    "CreateJobRequest",
    "EnableSyncRequest",
    "JobResponse",
    "SyncConfigResponse",
    "SyncHistoryResponse",
    "TrackMappingResponse",
    "UpdateFrequencyRequest",
]
