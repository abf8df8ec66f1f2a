"""Clean playlist job endpoints."""

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from sse_starlette.sse import EventSourceResponse

from cleanspot.api.dependencies import (
    get_container,
    get_current_user_id,
    get_job_service,
)
from cleanspot.api.schemas import CreateJobRequest, JobResponse, TrackMappingResponse
from cleanspot.application.services.clean_playlist_job_service import (
    CleanPlaylistJobService,
)
from cleanspot.application.services.progress_broadcaster import (
    JOB_COMPLETED,
    JOB_FAILED,
    PROGRESS_UPDATE,
    ProgressEvent,
)
from cleanspot.domain.entities import JobStatus
from cleanspot.infrastructure.container import ServiceContainer
from cleanspot.infrastructure.persistence.database import Database
from cleanspot.infrastructure.persistence.models import CleanPlaylistJobModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs")


def _to_response(job: CleanPlaylistJobModel) -> JobResponse:
    return JobResponse.model_validate(job)


@router.post("", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_job(
    body: CreateJobRequest,
    user_id: str = Depends(get_current_user_id),
    service: CleanPlaylistJobService = Depends(get_job_service),
) -> JobResponse:
    """Submit a playlist for cleaning. Processing happens in the background."""
    job = await service.create_job(user_id, body.source_playlist_id, body.target_playlist_name)
    return _to_response(job)


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    service: CleanPlaylistJobService = Depends(get_job_service),
) -> list[JobResponse]:
    jobs = await service.list_jobs(user_id, limit)
    return [_to_response(job) for job in jobs]


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    service: CleanPlaylistJobService = Depends(get_job_service),
) -> JobResponse:
    return _to_response(await service.get_job(job_id, user_id))


@router.get("/{job_id}/mappings", response_model=list[TrackMappingResponse])
async def get_job_mappings(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    service: CleanPlaylistJobService = Depends(get_job_service),
) -> list[TrackMappingResponse]:
    mappings = await service.get_job_mappings(job_id, user_id)
    return [TrackMappingResponse.model_validate(m) for m in mappings]


def _snapshot_event(job: CleanPlaylistJobModel) -> dict[str, Any]:
    payload = CleanPlaylistJobService.progress_payload(job)
    if job.status == JobStatus.COMPLETED.value:
        payload["target_playlist_id"] = job.target_playlist_id
        payload["target_playlist_name"] = job.target_playlist_name
        return {"event": JOB_COMPLETED, "data": payload}
    if job.status == JobStatus.FAILED.value:
        return {
            "event": JOB_FAILED,
            "data": {"job_id": job.id, "error": job.error_message},
        }
    return {"event": PROGRESS_UPDATE, "data": payload}


def _encode(event: str, data: dict[str, Any]) -> dict[str, str]:
    return {"event": event, "data": json.dumps(data, default=str)}


async def _relay_events(
    messages: AsyncGenerator[ProgressEvent, None],
    is_disconnected: Callable[[], Awaitable[bool]],
) -> AsyncGenerator[dict[str, str], None]:
    """Encode broadcaster events until the client leaves. Always closes the source stream."""
    async with aclosing(messages) as source:
        async for message in source:
            if await is_disconnected():
                break
            yield _encode(message.event, message.data)


# Hey future me - the stream ALWAYS starts with a snapshot of the current job state, so a
# client that connects mid-job (or after it finished) renders the right thing immediately.
# We subscribe BEFORE reading that snapshot, otherwise an event published in between
# would be lost. DB reads inside the generator use fresh sessions: the request's session
# dependency may already be closed while the stream is still open.
@router.get("/{job_id}/events")
async def job_events(
    job_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: CleanPlaylistJobService = Depends(get_job_service),
    container: ServiceContainer = Depends(get_container),
) -> EventSourceResponse:
    """Server-Sent Events stream of job progress.

    Events: progress-update, job-completed, job-failed, heartbeat.
    """
    await service.get_job(job_id, user_id)

    db: Database = request.app.state.db
    broadcaster = container.broadcaster
    heartbeat = container.settings.jobs.heartbeat_seconds

    async def load_job() -> CleanPlaylistJobModel | None:
        async with db.session_scope() as session:
            return await container.job_service(session).refresh_job(job_id)

    async def is_running() -> bool:
        async with db.session_scope() as session:
            return await container.job_service(session).is_processing(job_id)

    async def event_generator() -> AsyncIterator[dict[str, str]]:
        queue = await broadcaster.subscribe(job_id)
        job = await load_job()
        if job is None or job.is_terminal:
            await broadcaster.unsubscribe(job_id, queue)
            if job is not None:
                snapshot = _snapshot_event(job)
                yield _encode(snapshot["event"], snapshot["data"])
            return

        snapshot = _snapshot_event(job)
        yield _encode(snapshot["event"], snapshot["data"])

        relay = _relay_events(
            broadcaster.stream(job_id, heartbeat, is_running, queue=queue),
            request.is_disconnected,
        )
        async with aclosing(relay) as events:
            async for chunk in events:
                yield chunk

    return EventSourceResponse(event_generator())
