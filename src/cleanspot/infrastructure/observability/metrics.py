"""Sync and webhook metrics in Prometheus text exposition format.

Hey future me - these are exposed at /api/metrics (scrape target) and /api/metrics/json
(for humans). Recorded from:

- SyncService.sync: started / completed / failed, duration, tracks added / removed
- SyncService subscription checks: one validation per check, labelled active / inactive
- SyncSchedulerWorker: configs deactivated because the subscription lapsed
- webhook route + WebhookRetryWorker: one event per outcome, labelled by source
- the metrics route itself: the active-config gauge, read from the DB at scrape time

Values live in process memory and reset on restart. Prometheus handles that for counters.
"""

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class MetricDefinition:
    """Metric definition with name, type, help text."""

    name: str
    type: str  # "counter", "gauge", "histogram"
    help: str
    labels: list[str] = field(default_factory=list)


DEFINITIONS: dict[str, MetricDefinition] = {
    definition.name: definition
    for definition in (
        MetricDefinition("sync_started_total", "counter", "Playlist syncs started"),
        MetricDefinition("sync_completed_total", "counter", "Playlist syncs completed"),
        MetricDefinition("sync_failed_total", "counter", "Playlist syncs failed"),
        MetricDefinition(
            "sync_duration_seconds", "histogram", "Playlist sync duration", ["status"]
        ),
        MetricDefinition(
            "sync_tracks_added_total", "counter", "Clean tracks added to target playlists"
        ),
        MetricDefinition(
            "sync_tracks_removed_total", "counter", "Tracks removed from target playlists"
        ),
        MetricDefinition(
            "subscription_validations_total",
            "counter",
            "Subscription checks made before syncing",
            ["result"],
        ),
        MetricDefinition(
            "sync_configs_deactivated_total",
            "counter",
            "Sync configs deactivated by the scheduler",
            ["reason"],
        ),
        MetricDefinition("sync_active_configs", "gauge", "Currently active sync configs"),
        MetricDefinition(
            "webhook_events_total",
            "counter",
            "Payment webhook outcomes",
            ["outcome", "source"],
        ),
    )
}


class SyncMetrics:
    """Thread-safe collector for sync and webhook metrics.

    Usage:
        metrics = get_sync_metrics()
        metrics.inc_sync_started()
        metrics.observe_sync_duration(1.2, status="completed")
        text = metrics.to_prometheus_format()
    """

    def __init__(self, prefix: str = "cleanspot") -> None:
        self._lock = Lock()
        self._prefix = prefix
        self._counters: dict[str, dict[str, float]] = {}
        self._gauges: dict[str, dict[str, float]] = {}
        self._histograms: dict[str, list[tuple[dict[str, str], float]]] = {}

    @staticmethod
    def _make_label_key(labels: dict[str, str]) -> str:
        return "|".join(f"{k}={v}" for k, v in sorted(labels.items()))

    @staticmethod
    def _parse_label_key(key: str) -> dict[str, str]:
        if not key:
            return {}
        return dict(part.split("=", 1) for part in key.split("|") if "=" in part)

    def _inc(self, name: str, amount: float = 1, **labels: str) -> None:
        with self._lock:
            values = self._counters.setdefault(name, {})
            key = self._make_label_key(labels)
            values[key] = values.get(key, 0) + amount

    # ==========================================================================
    # RECORDING
    # ==========================================================================

    def inc_sync_started(self) -> None:
        self._inc("sync_started_total")

    def inc_sync_completed(self, tracks_added: int = 0, tracks_removed: int = 0) -> None:
        self._inc("sync_completed_total")
        if tracks_added:
            self._inc("sync_tracks_added_total", tracks_added)
        if tracks_removed:
            self._inc("sync_tracks_removed_total", tracks_removed)

    def inc_sync_failed(self) -> None:
        self._inc("sync_failed_total")

    def observe_sync_duration(self, duration_seconds: float, status: str) -> None:
        with self._lock:
            self._histograms.setdefault("sync_duration_seconds", []).append(
                ({"status": status}, duration_seconds)
            )

    def inc_subscription_validation(self, active: bool) -> None:
        self._inc("subscription_validations_total", result="active" if active else "inactive")

    def inc_config_deactivated(self, reason: str) -> None:
        self._inc("sync_configs_deactivated_total", reason=reason)

    def set_active_configs(self, value: int) -> None:
        with self._lock:
            self._gauges["sync_active_configs"] = {"": float(value)}

    def inc_webhook_event(self, outcome: str, source: str = "delivery") -> None:
        self._inc("webhook_events_total", outcome=outcome, source=source)

    # ==========================================================================
    # READING
    # ==========================================================================

    def counter_value(self, name: str, **labels: str) -> float:
        """Current value of one counter series (0 when never recorded)."""
        with self._lock:
            return self._counters.get(name, {}).get(self._make_label_key(labels), 0)

    def _format_labels(self, labels: dict[str, str]) -> str:
        if not labels:
            return ""
        return "{" + ",".join(f'{k}="{v}"' for k, v in sorted(labels.items())) + "}"

    def _header(self, name: str) -> list[str]:
        definition = DEFINITIONS[name]
        full_name = f"{self._prefix}_{name}"
        return [
            f"# HELP {full_name} {definition.help}",
            f"# TYPE {full_name} {definition.type}",
        ]

    def to_prometheus_format(self) -> str:
        """Export everything recorded so far. Histograms carry _count and _sum only."""
        lines: list[str] = []

        with self._lock:
            for store in (self._counters, self._gauges):
                for name, values in store.items():
                    lines.extend(self._header(name))
                    for label_key, value in values.items():
                        labels = self._format_labels(self._parse_label_key(label_key))
                        lines.append(f"{self._prefix}_{name}{labels} {value}")

            for name, observations in self._histograms.items():
                lines.extend(self._header(name))
                by_labels: dict[str, list[float]] = {}
                for labels_dict, value in observations:
                    by_labels.setdefault(self._make_label_key(labels_dict), []).append(value)
                for label_key, values_list in by_labels.items():
                    labels = self._format_labels(self._parse_label_key(label_key))
                    full_name = f"{self._prefix}_{name}"
                    lines.append(f"{full_name}_count{labels} {len(values_list)}")
                    lines.append(f"{full_name}_sum{labels} {sum(values_list)}")

        return "\n".join(lines) + "\n"

    def get_summary(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {name: dict(values) for name, values in self._counters.items()},
                "gauges": {name: dict(values) for name, values in self._gauges.items()},
                "histograms": {
                    name: {"count": len(obs), "sum": sum(v for _, v in obs)}
                    for name, obs in self._histograms.items()
                },
            }


_sync_metrics: SyncMetrics | None = None


def get_sync_metrics() -> SyncMetrics:
    """Global collector, created on first use."""
    global _sync_metrics
    if _sync_metrics is None:
        _sync_metrics = SyncMetrics()
    return _sync_metrics


def reset_sync_metrics() -> None:
    """Drop the global collector (tests)."""
    global _sync_metrics
    _sync_metrics = None
