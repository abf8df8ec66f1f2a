"""Tests for WebhookRetryWorker."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fakes import WEBHOOK_SECRET
from sqlalchemy import select, update

from cleanspot.application.services.subscription_service import SubscriptionService
from cleanspot.application.services.webhook_backoff import WebhookBackoff
from cleanspot.application.services.webhook_service import WebhookOutcome, WebhookService
from cleanspot.application.workers.webhook_retry_worker import WebhookRetryWorker
from cleanspot.domain.entities import WebhookRetryStatus
from cleanspot.domain.exceptions import ExternalServiceError
from cleanspot.infrastructure.persistence.models import WebhookRetryModel, utc_now
from cleanspot.infrastructure.persistence.repositories import ProcessedWebhookEventRepository
from cleanspot.infrastructure.security.webhook_signature import WebhookSignatureVerifier

VERIFIER = WebhookSignatureVerifier(WEBHOOK_SECRET)

PAYLOAD = json.dumps(
    {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_1", "client_reference_id": "user-9"}},
    }
)


@pytest.fixture
def flaky() -> AsyncMock:
    subscriptions = AsyncMock(spec=SubscriptionService)
    subscriptions.apply_event.side_effect = ExternalServiceError("processor timeout")
    return subscriptions


def _factory(settings, subscriptions=None):
    def build(session) -> WebhookService:
        return WebhookService(
            session,
            VERIFIER,
            subscriptions=subscriptions,
            backoff=WebhookBackoff.from_settings(settings.webhooks),
            max_retries=settings.webhooks.max_retries,
        )

    return build


async def _make_due(session) -> None:
    await session.execute(
        update(WebhookRetryModel).values(next_retry_at=utc_now() - timedelta(seconds=1))
    )
    await session.commit()


async def _retry(session) -> WebhookRetryModel:
    ids = (await session.execute(select(WebhookRetryModel.id))).scalars().all()
    assert len(ids) == 1
    return await session.get(WebhookRetryModel, ids[0], populate_existing=True)


class TestWebhookRetryWorker:
    """Sweeps over due webhook retries."""

    @pytest.mark.asyncio
    async def test_empty_sweep(self, db, settings) -> None:
        """Nothing due, nothing done."""
        worker = WebhookRetryWorker(db.session_factory, _factory(settings))
        assert await worker.run_once() == 0
        assert worker.get_stats()["sweeps"] == 1

    @pytest.mark.asyncio
    async def test_due_retry_succeeds(self, db, session, settings, flaky) -> None:
        """A due retry is processed and counted."""
        outcome = await _factory(settings, flaky)(session).handle_raw(
            PAYLOAD, VERIFIER.sign(PAYLOAD)
        )
        assert outcome is WebhookOutcome.SCHEDULED_RETRY
        await _make_due(session)

        worker = WebhookRetryWorker(db.session_factory, _factory(settings))
        assert await worker.run_once() == 1

        assert (await _retry(session)).status == WebhookRetryStatus.SUCCEEDED.value
        assert await ProcessedWebhookEventRepository(session).exists("evt_1") is True
        assert worker.get_stats()["succeeded"] == 1

    @pytest.mark.asyncio
    async def test_not_yet_due_retry_is_left_alone(self, db, session, settings, flaky) -> None:
        """Future retries wait."""
        await _factory(settings, flaky)(session).handle_raw(PAYLOAD, VERIFIER.sign(PAYLOAD))

        worker = WebhookRetryWorker(db.session_factory, _factory(settings))
        assert await worker.run_once() == 0
        assert (await _retry(session)).status == WebhookRetryStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_persistent_failure_is_rescheduled_then_abandoned(
        self, db, session, settings, flaky
    ) -> None:
        """Keeps failing until abandoned."""
        await _factory(settings, flaky)(session).handle_raw(PAYLOAD, VERIFIER.sign(PAYLOAD))
        worker = WebhookRetryWorker(db.session_factory, _factory(settings, flaky))

        await _make_due(session)
        assert await worker.run_once() == 1
        retry = await _retry(session)
        assert retry.status == WebhookRetryStatus.PENDING.value
        assert retry.attempt_number == 2

        await _make_due(session)
        assert await worker.run_once() == 1
        assert (await _retry(session)).status == WebhookRetryStatus.ABANDONED.value

        stats = worker.get_stats()
        assert stats["rescheduled"] == 1
        assert stats["abandoned"] == 1

        # Abandoned rows are never picked up again
        await _make_due(session)
        assert await worker.run_once() == 0
