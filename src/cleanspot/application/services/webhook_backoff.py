"""Exponential backoff for webhook retries."""

import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from cleanspot.config.settings import WebhookSettings
from cleanspot.infrastructure.persistence.models import utc_now

JITTER_FACTOR = 0.1
MIN_DELAY_MINUTES = 0.5


@dataclass(frozen=True)
class WebhookBackoff:
    """delay(attempt) = min(base * 2^attempt, cap) ± 10% jitter, never below 30 seconds.

    With the defaults (base 1 min, cap 60 min): 2, 4, 8, 16, 32, 60, 60... minutes.
    """

    base_delay_minutes: float = 1.0
    max_delay_minutes: float = 60.0
    jitter: bool = True
    # Injected in tests to make jitter deterministic
    rng: Callable[[], float] = field(default=random.random, compare=False, repr=False)

    @classmethod
    def from_settings(cls, settings: WebhookSettings) -> "WebhookBackoff":
        return cls(
            base_delay_minutes=settings.base_delay_minutes,
            max_delay_minutes=settings.max_delay_minutes,
            jitter=settings.jitter,
        )

    def delay(self, attempt_number: int) -> timedelta:
        minutes = min(self.base_delay_minutes * (2 ** max(attempt_number, 0)), self.max_delay_minutes)
        if self.jitter:
            minutes += minutes * JITTER_FACTOR * (self.rng() - 0.5) * 2
        return timedelta(minutes=max(minutes, MIN_DELAY_MINUTES))

    def next_retry_at(self, attempt_number: int, now: datetime | None = None) -> datetime:
        return (now or utc_now()) + self.delay(attempt_number)
