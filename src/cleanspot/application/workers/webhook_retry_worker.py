"""Webhook Retry Worker - sweeps webhook_retries for due rows.

Hey future me - same shape as the other polling workers: every sweep_interval seconds,
take up to batch_size PENDING rows with next_retry_at <= now (oldest first) and hand each
to WebhookService.process_retry(). The service decides SUCCEEDED / rescheduled / ABANDONED.

If the sweep itself blows up (DB down), we back off to 5x the interval instead of
hammering a dead database every minute.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cleanspot.application.services.webhook_service import WebhookOutcome, WebhookService
from cleanspot.infrastructure.observability.logging import correlation_scope
from cleanspot.infrastructure.observability.metrics import get_sync_metrics
from cleanspot.infrastructure.observability.tracing import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

ERROR_BACKOFF_MULTIPLIER = 5


class WebhookRetryWorker:
    """Background loop re-processing failed webhooks."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        service_factory: Callable[[AsyncSession], WebhookService],
        check_interval: int = 60,
        batch_size: int = 50,
    ) -> None:
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._check_interval = check_interval
        self._batch_size = batch_size
        self._running = False
        self._stats: dict[str, Any] = {
            "sweeps": 0,
            "retries_processed": 0,
            "succeeded": 0,
            "rescheduled": 0,
            "abandoned": 0,
            "last_check_at": None,
        }

    async def start(self) -> None:
        """Run until stop() is called."""
        self._running = True
        logger.info(
            f"WebhookRetryWorker started (check_interval={self._check_interval}s, "
            f"batch_size={self._batch_size})"
        )

        while self._running:
            delay = self._check_interval
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"WebhookRetryWorker error: {e}")
                delay = self._check_interval * ERROR_BACKOFF_MULTIPLIER

            await asyncio.sleep(delay)

    def stop(self) -> None:
        self._running = False
        logger.info("WebhookRetryWorker stopping...")

    async def run_once(self) -> int:
        """One sweep.

        Returns:
            Number of retry rows handled
        """
        handled = 0
        async with self._session_factory() as session:
            service = self._service_factory(session)
            # Plain ids up front: a failed retry rolls back and expires every loaded row
            due = [(r.id, r.event_id) for r in await service.list_due_retries(self._batch_size)]

            for retry_id, event_id in due:
                with (
                    correlation_scope(f"webhook:{event_id}"),
                    tracer.start_as_current_span("webhook.retry") as span,
                ):
                    span.set_attribute("cleanspot.webhook_event_id", event_id)
                    try:
                        outcome = await service.process_retry(retry_id)
                    except Exception as e:
                        # Recording the outcome failed - the row stays PENDING for next sweep
                        await session.rollback()
                        logger.exception(f"Retry of webhook {event_id} crashed: {e}")
                        continue
                handled += 1
                self._count(outcome)

        self._stats["sweeps"] += 1
        self._stats["retries_processed"] += handled
        self._stats["last_check_at"] = datetime.now(UTC)
        if handled:
            logger.info(f"Processed {handled} webhook retries")
        return handled

    def _count(self, outcome: WebhookOutcome) -> None:
        get_sync_metrics().inc_webhook_event(outcome.value, source="retry")
        if outcome in (WebhookOutcome.PROCESSED, WebhookOutcome.DUPLICATE, WebhookOutcome.IGNORED):
            self._stats["succeeded"] += 1
        elif outcome is WebhookOutcome.SCHEDULED_RETRY:
            self._stats["rescheduled"] += 1
        elif outcome is WebhookOutcome.ABANDONED:
            self._stats["abandoned"] += 1

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "running": self._running,
            "check_interval": self._check_interval,
            "batch_size": self._batch_size,
        }


def create_webhook_retry_worker(
    session_factory: async_sessionmaker[AsyncSession],
    service_factory: Callable[[AsyncSession], WebhookService],
    check_interval: int = 60,
    batch_size: int = 50,
) -> WebhookRetryWorker:
    """Create a WebhookRetryWorker with the given configuration."""
    return WebhookRetryWorker(
        session_factory=session_factory,
        service_factory=service_factory,
        check_interval=check_interval,
        batch_size=batch_size,
    )
