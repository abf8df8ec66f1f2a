"""Next-run calculation for playlist sync configs."""

import calendar
from datetime import UTC, datetime, time, timedelta

from cleanspot.domain.entities import SyncFrequency
from cleanspot.infrastructure.persistence.models import ensure_utc_aware, utc_now

# Daily syncs run at 00:01 UTC
DAILY_RUN_TIME = time(hour=0, minute=1)


class SyncTimeCalculator:
    """Maps a sync frequency onto the next scheduled run.

    - daily   → tomorrow at 00:01 UTC
    - weekly  → base + 7 days
    - monthly → same day next month (clamped, Jan 31 → Feb 28/29)
    - manual  → None, the scheduler never picks it up
    - anything unknown falls back to daily
    """

    def next_sync_time(
        self, frequency: str, base: datetime | None = None
    ) -> datetime | None:
        base = ensure_utc_aware(base).astimezone(UTC) if base is not None else utc_now()

        try:
            parsed = SyncFrequency(frequency.lower())
        except ValueError:
            parsed = SyncFrequency.DAILY

        if parsed is SyncFrequency.MANUAL:
            return None
        if parsed is SyncFrequency.WEEKLY:
            return base + timedelta(days=7)
        if parsed is SyncFrequency.MONTHLY:
            return self._add_month(base)
        return datetime.combine(
            base.date() + timedelta(days=1), DAILY_RUN_TIME, tzinfo=UTC
        )

    @staticmethod
    def _add_month(base: datetime) -> datetime:
        year = base.year + (1 if base.month == 12 else 0)
        month = 1 if base.month == 12 else base.month + 1
        last_day = calendar.monthrange(year, month)[1]
        return base.replace(year=year, month=month, day=min(base.day, last_day))
