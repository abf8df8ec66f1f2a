"""Webhook Service - at-least-once delivery in, at-most-once effect out.

Hey future me - the payment processor WILL deliver the same event more than once (network
blips, its own retries, our 503s). The rules:

1. bad signature → REJECTED. Nothing is stored, not even a retry row. Storing unverified
   payloads would let anyone fill our tables.
2. event id already in processed_webhook_events → DUPLICATE, nothing happens
3. apply the side effect + INSERT the ledger row in ONE transaction. The unique index on
   event_id is the real lock: if a concurrent delivery won, our INSERT blows up with
   IntegrityError, we roll back (side effect included) and answer DUPLICATE
4. transient failure → webhook_retries row, attempt_number += 1, next_retry_at by backoff.
   Past max_retries → ABANDONED + ledger row with is_successful=False
5. permanent failure → ledger row with is_successful=False straight away, never retried

Retries (WebhookRetryWorker → process_retry) skip signature verification: the payload was
verified on receipt, and the signature timestamp is long past tolerance by then.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from enum import Enum
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.application.services.error_classifier import ErrorClassifier
from cleanspot.application.services.subscription_service import SubscriptionService
from cleanspot.application.services.webhook_backoff import WebhookBackoff
from cleanspot.domain.entities import WebhookRetryStatus
from cleanspot.domain.exceptions import DomainException
from cleanspot.infrastructure.persistence.models import WebhookRetryModel, utc_now
from cleanspot.infrastructure.persistence.repositories import (
    ProcessedWebhookEventRepository,
    WebhookRetryRepository,
)
from cleanspot.infrastructure.security.webhook_signature import WebhookSignatureVerifier

logger = logging.getLogger(__name__)


class WebhookOutcome(str, Enum):
    """What happened to one delivery."""

    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    PROCESSED = "processed"
    SCHEDULED_RETRY = "scheduled_retry"
    ABANDONED = "abandoned"
    IGNORED = "ignored"


class WebhookService:
    """Verifies, deduplicates and applies payment webhooks."""

    def __init__(
        self,
        session: AsyncSession,
        verifier: WebhookSignatureVerifier,
        subscriptions: SubscriptionService | None = None,
        backoff: WebhookBackoff | None = None,
        classifier: ErrorClassifier | None = None,
        max_retries: int = 5,
    ) -> None:
        self._session = session
        self._verifier = verifier
        self._subscriptions = subscriptions or SubscriptionService(session)
        self._backoff = backoff or WebhookBackoff()
        self._classifier = classifier or ErrorClassifier()
        self._max_retries = max_retries
        self._ledger = ProcessedWebhookEventRepository(session)
        self._retries = WebhookRetryRepository(session)

    async def handle_raw(self, payload: str, signature: str) -> WebhookOutcome:
        """Entry point for the HTTP route: body + signature header as received."""
        if not self._verifier.verify(payload, signature):
            logger.warning("Rejected webhook with invalid signature")
            return WebhookOutcome.REJECTED

        try:
            event = json.loads(payload)
            event_id = str(event["id"])
            event_type = str(event["type"])
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring signed webhook with malformed body")
            return WebhookOutcome.IGNORED

        return await self.handle(event_id, event_type, payload, signature)

    async def handle(
        self, event_id: str, event_type: str, payload: str, signature: str
    ) -> WebhookOutcome:
        """Process one delivery of an event.

        Raises only for infrastructure failures while recording the outcome itself
        (the route answers 503 so the processor redelivers).
        """
        if not self._verifier.verify(payload, signature):
            logger.warning(f"Rejected webhook {event_id}: invalid signature")
            return WebhookOutcome.REJECTED

        if await self._ledger.exists(event_id):
            logger.info(f"Webhook {event_id} already processed, skipping")
            return WebhookOutcome.DUPLICATE

        return await self._process(event_id, event_type, payload, signature)

    async def list_due_retries(self, limit: int = 50) -> Sequence[WebhookRetryModel]:
        return await self._retries.list_due(utc_now(), limit)

    async def process_retry(self, retry_id: str) -> WebhookOutcome:
        """Re-run a scheduled retry (called by WebhookRetryWorker)."""
        retry = await self._retries.get(retry_id)
        if retry is None or retry.status != WebhookRetryStatus.PENDING.value:
            return WebhookOutcome.IGNORED

        if await self._ledger.exists(retry.event_id):
            retry.status = WebhookRetryStatus.SUCCEEDED.value
            await self._session.commit()
            logger.info(f"Retry for webhook {retry.event_id} resolved by another delivery")
            return WebhookOutcome.DUPLICATE

        logger.info(
            f"Retrying webhook {retry.event_id} (attempt {retry.attempt_number + 1}, "
            f"max {retry.max_retries})"
        )
        return await self._process(
            retry.event_id, retry.event_type, retry.payload, retry.signature
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _process(
        self, event_id: str, event_type: str, payload: str, signature: str
    ) -> WebhookOutcome:
        try:
            event: dict[str, Any] = json.loads(payload)
            handled = await self._subscriptions.apply_event(event_type, event)
            await self._ledger.record(event_id, event_type, is_successful=True)
            await self._resolve_retry(event_id, WebhookRetryStatus.SUCCEEDED)
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            if await self._ledger.exists(event_id):
                logger.info(f"Webhook {event_id} was processed concurrently, rolled back")
                await self._resolve_retry(event_id, WebhookRetryStatus.SUCCEEDED)
                await self._session.commit()
                return WebhookOutcome.DUPLICATE
            # Not our ledger row - e.g. two events racing to create the same subscription
            return await self._schedule_retry(
                event_id, event_type, payload, signature, self._describe(e)
            )
        except Exception as e:
            await self._session.rollback()
            message = self._describe(e)
            if self._classifier.is_retryable(e):
                logger.warning(f"Transient failure processing webhook {event_id}: {message}")
                return await self._schedule_retry(event_id, event_type, payload, signature, message)
            if isinstance(e, DomainException):
                logger.error(f"Permanent failure processing webhook {event_id}: {message}")
            else:
                logger.exception(f"Unexpected failure processing webhook {event_id}")
            return await self._abandon(event_id, event_type, message)

        logger.info(f"Processed webhook {event_id} ({event_type})")
        return WebhookOutcome.PROCESSED if handled else WebhookOutcome.IGNORED

    async def _schedule_retry(
        self,
        event_id: str,
        event_type: str,
        payload: str,
        signature: str,
        error_message: str,
    ) -> WebhookOutcome:
        now = utc_now()
        retry = await self._retries.get_by_event_id(event_id)
        if retry is None:
            retry = WebhookRetryModel(
                event_id=event_id,
                event_type=event_type,
                payload=payload,
                signature=signature,
                attempt_number=1,
                max_retries=self._max_retries,
                status=WebhookRetryStatus.PENDING.value,
                next_retry_at=now,
                last_error_message=error_message,
            )
            await self._retries.add(retry)
        else:
            retry.attempt_number += 1
            retry.last_error_message = error_message

        if retry.attempt_number > retry.max_retries:
            logger.error(
                f"Webhook {event_id} exceeded {retry.max_retries} retries, abandoning"
            )
            return await self._abandon(event_id, event_type, error_message)

        retry.status = WebhookRetryStatus.PENDING.value
        retry.next_retry_at = self._backoff.next_retry_at(retry.attempt_number, now)
        await self._session.commit()
        logger.info(
            f"Scheduled retry {retry.attempt_number}/{retry.max_retries} for webhook "
            f"{event_id} at {retry.next_retry_at.isoformat()}"
        )
        return WebhookOutcome.SCHEDULED_RETRY

    async def _abandon(self, event_id: str, event_type: str, error_message: str) -> WebhookOutcome:
        try:
            await self._resolve_retry(event_id, WebhookRetryStatus.ABANDONED, error_message)
            await self._ledger.record(
                event_id, event_type, is_successful=False, error_message=error_message
            )
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            logger.info(f"Webhook {event_id} was recorded concurrently while abandoning")
            return WebhookOutcome.DUPLICATE
        return WebhookOutcome.ABANDONED

    async def _resolve_retry(
        self,
        event_id: str,
        status: WebhookRetryStatus,
        error_message: str | None = None,
    ) -> None:
        """Close the retry row for an event, if there is one. Caller commits."""
        retry = await self._retries.get_by_event_id(event_id)
        if retry is None or retry.status != WebhookRetryStatus.PENDING.value:
            return
        retry.status = status.value
        if error_message is not None:
            retry.last_error_message = error_message

    @staticmethod
    def _describe(error: Exception) -> str:
        if isinstance(error, DomainException):
            return error.message
        return f"{type(error).__name__}: {error}"[:500]
