"""Tests for WebhookBackoff."""

from datetime import UTC, datetime, timedelta

import pytest

from cleanspot.application.services.webhook_backoff import WebhookBackoff
from cleanspot.config.settings import WebhookSettings


class TestWebhookBackoff:
    """Retry delays: 2 minute base, doubling, capped."""

    @pytest.mark.parametrize(
        ("attempt", "minutes"),
        [(0, 1), (1, 2), (2, 4), (3, 8), (5, 32), (6, 60), (12, 60)],
    )
    def test_doubles_until_cap(self, attempt, minutes) -> None:
        """Each attempt doubles the delay until the cap."""
        backoff = WebhookBackoff(jitter=False)
        assert backoff.delay(attempt) == timedelta(minutes=minutes)

    def test_jitter_stays_within_ten_percent(self) -> None:
        """Jitter moves the delay by at most 10%."""
        high = WebhookBackoff(rng=lambda: 1.0)
        low = WebhookBackoff(rng=lambda: 0.0)
        assert high.delay(3) == timedelta(minutes=8.8)
        assert low.delay(3) == timedelta(minutes=7.2)

    def test_never_below_thirty_seconds(self) -> None:
        """There is a floor."""
        backoff = WebhookBackoff(base_delay_minutes=0.1, jitter=False)
        assert backoff.delay(0) == timedelta(seconds=30)

    def test_next_retry_at(self) -> None:
        """next_retry_at is now plus the delay."""
        now = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)
        backoff = WebhookBackoff(jitter=False)
        assert backoff.next_retry_at(1, now) == now + timedelta(minutes=2)

    def test_from_settings(self) -> None:
        """Settings values are picked up."""
        backoff = WebhookBackoff.from_settings(
            WebhookSettings(base_delay_minutes=2, max_delay_minutes=10, jitter=False)
        )
        assert backoff.delay(1) == timedelta(minutes=4)
        assert backoff.delay(4) == timedelta(minutes=10)
