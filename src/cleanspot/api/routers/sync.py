"""Playlist sync endpoints."""

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from cleanspot.api.dependencies import get_current_user_id, get_sync_service
from cleanspot.api.schemas import (
    EnableSyncRequest,
    SyncConfigResponse,
    SyncHistoryResponse,
    UpdateFrequencyRequest,
)
from cleanspot.application.services.playlist_sync_service import SyncService

router = APIRouter(prefix="/sync")


@router.post("/{job_id}/enable", response_model=SyncConfigResponse)
async def enable_sync(
    job_id: str,
    body: EnableSyncRequest | None = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
) -> SyncConfigResponse:
    """Turn on recurring sync for a completed job."""
    frequency = body.frequency if body else None
    config = await service.enable_sync(job_id, user_id, frequency)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Sync requires a completed job with a clean playlist and an active subscription",
        )
    return SyncConfigResponse.model_validate(config)


@router.get("", response_model=list[SyncConfigResponse])
async def list_sync_configs(
    user_id: str = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
) -> list[SyncConfigResponse]:
    configs = await service.get_user_configs(user_id)
    return [SyncConfigResponse.model_validate(c) for c in configs]


@router.delete("/{config_id}", status_code=status.HTTP_204_NO_CONTENT)
async def disable_sync(
    config_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
) -> None:
    if not await service.disable_sync(config_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sync config not found")


@router.put("/{config_id}/frequency", response_model=SyncConfigResponse)
async def update_frequency(
    config_id: str,
    body: UpdateFrequencyRequest,
    user_id: str = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
) -> SyncConfigResponse:
    config = await service.update_frequency(config_id, user_id, body.frequency)
    return SyncConfigResponse.model_validate(config)


@router.post("/{config_id}/run", response_model=SyncHistoryResponse)
async def run_sync(
    config_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
) -> SyncHistoryResponse:
    """Sync now. A failed run still answers 200, the failure is in the history row."""
    history = await service.trigger_manual_sync(config_id, user_id)
    return SyncHistoryResponse.model_validate(history)


@router.get("/{config_id}/history", response_model=list[SyncHistoryResponse])
async def get_sync_history(
    config_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
) -> list[SyncHistoryResponse]:
    history = await service.get_history(config_id, user_id, limit)
    return [SyncHistoryResponse.model_validate(h) for h in history]
