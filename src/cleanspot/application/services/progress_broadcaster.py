"""In-process pub/sub for job progress events.

Hey future me - this replaces a "global dict of live connections" with an explicit
channel per job id:

    queue = await broadcaster.subscribe(job_id)      # SSE stream opens
    ...
    await broadcaster.unsubscribe(job_id, queue)     # stream closes / client leaves

The job engine only ever calls publish(), which is fire-and-forget: it NEVER raises
and NEVER blocks. A slow or vanished subscriber gets events dropped (bounded queue),
the job keeps going. Terminal events (job-completed / job-failed) close the channel
after delivery.

Single process only. Multiple API replicas would need a broker (Redis pub/sub etc.)
behind the same subscribe/unsubscribe/publish surface.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from cleanspot.infrastructure.persistence.models import utc_now

logger = logging.getLogger(__name__)

PROGRESS_UPDATE = "progress-update"
JOB_COMPLETED = "job-completed"
JOB_FAILED = "job-failed"
HEARTBEAT = "heartbeat"

TERMINAL_EVENTS = frozenset({JOB_COMPLETED, JOB_FAILED})


@dataclass(frozen=True)
class ProgressEvent:
    """One server-pushed event for a job channel."""

    event: str
    job_id: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS


class ProgressBroadcaster:
    """Job-scoped broadcast map guarded by an asyncio lock."""

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._channels: dict[str, set[asyncio.Queue[ProgressEvent]]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, job_id: str) -> asyncio.Queue[ProgressEvent]:
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=self._queue_size)
        async with self._lock:
            self._channels.setdefault(job_id, set()).add(queue)
        logger.debug(f"Subscriber joined job channel {job_id}")
        return queue

    async def unsubscribe(self, job_id: str, queue: asyncio.Queue[ProgressEvent]) -> None:
        async with self._lock:
            subscribers = self._channels.get(job_id)
            if subscribers is None:
                return
            subscribers.discard(queue)
            if not subscribers:
                del self._channels[job_id]
        logger.debug(f"Subscriber left job channel {job_id}")

    def subscriber_count(self, job_id: str) -> int:
        return len(self._channels.get(job_id, ()))

    async def publish(self, job_id: str, event: str, data: dict[str, Any] | None = None) -> None:
        """Deliver an event to every subscriber of the job. Best-effort, never raises."""
        message = ProgressEvent(event=event, job_id=job_id, data=dict(data or {}))
        try:
            async with self._lock:
                subscribers = list(self._channels.get(job_id, ()))
                if message.is_terminal:
                    self._channels.pop(job_id, None)

            for queue in subscribers:
                try:
                    queue.put_nowait(message)
                except asyncio.QueueFull:
                    logger.warning(f"Dropping {event} for job {job_id}: subscriber queue full")
        except Exception as e:
            # Progress is cosmetic - a broken channel must not fail the job
            logger.warning(f"Failed to broadcast {event} for job {job_id}: {e}")

    # Hey future me - this is the consumer side the SSE endpoint iterates. It yields real
    # events as they arrive, a heartbeat whenever heartbeat_seconds pass in silence while
    # is_running() still says the job is processing, and stops after a terminal event
    # (or as soon as is_running() reports the job is done). Unsubscribe happens in finally,
    # so a client disconnect (generator closed/cancelled) cleans up too.
    async def stream(
        self,
        job_id: str,
        heartbeat_seconds: float,
        is_running: Callable[[], Awaitable[bool]],
        queue: asyncio.Queue[ProgressEvent] | None = None,
    ) -> AsyncGenerator[ProgressEvent, None]:
        if queue is None:
            queue = await self.subscribe(job_id)
        try:
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
                except TimeoutError:
                    if not await is_running():
                        return
                    yield ProgressEvent(
                        event=HEARTBEAT,
                        job_id=job_id,
                        data={"timestamp": utc_now().isoformat()},
                    )
                    continue

                yield message
                if message.is_terminal:
                    return
        finally:
            await self.unsubscribe(job_id, queue)
