"""Transient vs. permanent failure classification for webhook processing."""

import asyncio

import httpx
from sqlalchemy.exc import DBAPIError, OperationalError

from cleanspot.domain.exceptions import (
    ExternalServiceError,
    RateLimitExceededError,
    TransientWebhookError,
)

RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    httpx.TimeoutException,
    asyncio.TimeoutError,
    OperationalError,
    ExternalServiceError,
    RateLimitExceededError,
    TransientWebhookError,
)


class ErrorClassifier:
    """Decides whether a failed webhook is worth another attempt.

    Network trouble, timeouts, dropped DB connections and upstream 5xx/429 are retried.
    Everything else (bad payload, unknown user, programming errors) is permanent:
    retrying would just fail the same way five more times.
    """

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, RETRYABLE_TYPES):
            return True
        if isinstance(error, DBAPIError) and error.connection_invalidated:
            return True
        return False
