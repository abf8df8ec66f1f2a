"""Sync Scheduler Worker - runs due playlist syncs.

Hey future me - this is the ONLY thing that starts scheduled syncs. Every poll interval:

1. ask SyncService.due_for_sync() (active + next_scheduled_sync <= now)
2. switch off configs whose owner lost their subscription
3. run the rest, at most max_concurrent at once, each in its OWN session

A failing sync doesn't need special handling here: SyncService.sync() records the failure
in history and moves next_scheduled_sync forward, so the config isn't picked up again
until its next slot.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cleanspot.application.services.playlist_sync_service import SyncService
from cleanspot.domain.entities import SyncStatus
from cleanspot.infrastructure.observability.logging import correlation_scope
from cleanspot.infrastructure.observability.metrics import get_sync_metrics
from cleanspot.infrastructure.observability.tracing import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

SUBSCRIPTION_INACTIVE = "Sync disabled: no active subscription"


class SyncSchedulerWorker:
    """Background loop that polls for due sync configs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        service_factory: Callable[[AsyncSession], SyncService],
        poll_interval: int = 300,
        max_concurrent: int = 3,
    ) -> None:
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._poll_interval = poll_interval
        self._max_concurrent = max_concurrent
        self._running = False
        self._stats: dict[str, Any] = {
            "cycles": 0,
            "syncs_completed": 0,
            "syncs_failed": 0,
            "configs_disabled": 0,
            "last_check_at": None,
        }

    async def start(self) -> None:
        """Run until stop() is called."""
        self._running = True
        logger.info(
            f"SyncSchedulerWorker started (poll_interval={self._poll_interval}s, "
            f"max_concurrent={self._max_concurrent})"
        )

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"SyncSchedulerWorker error: {e}")

            await asyncio.sleep(self._poll_interval)

    def stop(self) -> None:
        self._running = False
        logger.info("SyncSchedulerWorker stopping...")

    async def run_once(self) -> int:
        """One polling cycle.

        Returns:
            Number of syncs started
        """
        async with self._session_factory() as session:
            service = self._service_factory(session)
            due = await service.due_for_sync()

            config_ids: list[str] = []
            for config in due:
                if not await service.owner_has_subscription(config):
                    await service.deactivate(config, SUBSCRIPTION_INACTIVE)
                    get_sync_metrics().inc_config_deactivated("subscription_inactive")
                    self._stats["configs_disabled"] += 1
                    continue
                config_ids.append(config.id)

        self._stats["cycles"] += 1
        self._stats["last_check_at"] = datetime.now(UTC)

        if not config_ids:
            logger.debug("No sync configs due")
            return 0

        logger.info(f"Running {len(config_ids)} due syncs")
        semaphore = asyncio.Semaphore(self._max_concurrent)
        await asyncio.gather(*(self._run_sync(config_id, semaphore) for config_id in config_ids))
        return len(config_ids)

    async def _run_sync(self, config_id: str, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            with (
                correlation_scope(f"sync:{config_id}"),
                tracer.start_as_current_span("playlist_sync.run") as span,
            ):
                span.set_attribute("cleanspot.sync_config_id", config_id)
                try:
                    async with self._session_factory() as session:
                        history = await self._service_factory(session).sync(config_id)
                except Exception as e:
                    # sync() only raises for infrastructure trouble (DB gone, config deleted)
                    self._stats["syncs_failed"] += 1
                    logger.exception(f"Sync for config {config_id} crashed: {e}")
                    return

        if history.status == SyncStatus.COMPLETED.value:
            self._stats["syncs_completed"] += 1
        else:
            self._stats["syncs_failed"] += 1

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "running": self._running,
            "poll_interval": self._poll_interval,
            "max_concurrent": self._max_concurrent,
        }


def create_sync_scheduler_worker(
    session_factory: async_sessionmaker[AsyncSession],
    service_factory: Callable[[AsyncSession], SyncService],
    poll_interval: int = 300,
    max_concurrent: int = 3,
) -> SyncSchedulerWorker:
    """Create a SyncSchedulerWorker with the given configuration."""
    return SyncSchedulerWorker(
        session_factory=session_factory,
        service_factory=service_factory,
        poll_interval=poll_interval,
        max_concurrent=max_concurrent,
    )
