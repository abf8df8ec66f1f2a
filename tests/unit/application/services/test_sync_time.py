"""Tests for SyncTimeCalculator."""

from datetime import UTC, datetime, timedelta

import pytest

from cleanspot.application.services.sync_time import SyncTimeCalculator


@pytest.fixture
def calc() -> SyncTimeCalculator:
    return SyncTimeCalculator()


class TestSyncTimeCalculator:
    """Next scheduled sync per frequency."""

    def test_daily_runs_next_day_at_0001_utc(self, calc) -> None:
        """Daily runs at 00:01 UTC the next day."""
        base = datetime(2026, 3, 10, 18, 45, tzinfo=UTC)
        assert calc.next_sync_time("daily", base) == datetime(2026, 3, 11, 0, 1, tzinfo=UTC)

    def test_daily_just_after_midnight_still_moves_a_day(self, calc) -> None:
        """Even right after midnight it moves to the next day."""
        base = datetime(2026, 3, 10, 0, 0, 30, tzinfo=UTC)
        assert calc.next_sync_time("daily", base) == datetime(2026, 3, 11, 0, 1, tzinfo=UTC)

    def test_weekly_adds_seven_days(self, calc) -> None:
        """Weekly is seven days later."""
        base = datetime(2026, 3, 10, 18, 45, tzinfo=UTC)
        assert calc.next_sync_time("weekly", base) == base + timedelta(days=7)

    @pytest.mark.parametrize(
        ("base", "expected"),
        [
            (datetime(2026, 1, 15, 9, 0, tzinfo=UTC), datetime(2026, 2, 15, 9, 0, tzinfo=UTC)),
            (datetime(2026, 1, 31, 9, 0, tzinfo=UTC), datetime(2026, 2, 28, 9, 0, tzinfo=UTC)),
            (datetime(2028, 1, 31, 9, 0, tzinfo=UTC), datetime(2028, 2, 29, 9, 0, tzinfo=UTC)),
            (datetime(2026, 12, 20, 9, 0, tzinfo=UTC), datetime(2027, 1, 20, 9, 0, tzinfo=UTC)),
        ],
    )
    def test_monthly_clamps_to_month_end(self, calc, base, expected) -> None:
        """Jan 31 plus a month is the end of February."""
        assert calc.next_sync_time("monthly", base) == expected

    def test_manual_is_never_scheduled(self, calc) -> None:
        """Manual has no next run."""
        assert calc.next_sync_time("manual") is None

    def test_unknown_frequency_falls_back_to_daily(self, calc) -> None:
        """Unknown names schedule like daily."""
        base = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
        assert calc.next_sync_time("hourly", base) == calc.next_sync_time("daily", base)

    def test_naive_base_is_treated_as_utc(self, calc) -> None:
        """A naive base time is read as UTC."""
        naive = datetime(2026, 3, 10, 12, 0)
        assert calc.next_sync_time("weekly", naive) == datetime(2026, 3, 17, 12, 0, tzinfo=UTC)

    def test_default_base_is_now(self, calc) -> None:
        """No base time means now."""
        result = calc.next_sync_time("weekly")
        assert result is not None
        assert result > datetime.now(UTC) + timedelta(days=6)
