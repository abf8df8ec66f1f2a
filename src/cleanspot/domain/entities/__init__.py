"""Domain enums and constants shared by services, workers and persistence.

Hey future me - statuses are stored as plain strings in the DB (``.value``), these enums
are the ONE place the vocabulary is defined. Add a state here first, then teach the
services about it.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Clean-playlist job lifecycle.

    PENDING → PROCESSING → COMPLETED | FAILED. Terminal states never change.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


class SyncStatus(str, Enum):
    """Outcome of one sync run (history row + config.last_sync_status)."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncFrequency(str, Enum):
    """How often a sync config is reconciled."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MANUAL = "manual"  # never scheduled, only via "sync now"


class WebhookRetryStatus(str, Enum):
    """Retry row lifecycle. SUCCEEDED and ABANDONED are terminal."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    ABANDONED = "abandoned"


class SubscriptionStatus(str, Enum):
    """Subscription states as reported by the payment processor."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


# Token lifecycle constants
TOKEN_EXPIRY_BUFFER_MINUTES = 5
MAX_REFRESH_FAILURES = 5

DEFAULT_PROVIDER = "spotify"

__all__ = [
    "DEFAULT_PROVIDER",
    "JobStatus",
    "MAX_REFRESH_FAILURES",
    "SubscriptionStatus",
    "SyncFrequency",
    "SyncStatus",
    "TOKEN_EXPIRY_BUFFER_MINUTES",
    "WebhookRetryStatus",
]
