"""Tests for the sync/webhook metrics collector."""

from cleanspot.infrastructure.observability.metrics import (
    SyncMetrics,
    get_sync_metrics,
    reset_sync_metrics,
)


class TestSyncMetrics:
    """Recording and Prometheus text export."""

    def test_counters_with_and_without_labels(self) -> None:
        """Labelled series are rendered sorted by label name."""
        metrics = SyncMetrics()
        metrics.inc_sync_started()
        metrics.inc_sync_started()
        metrics.inc_webhook_event("processed", source="retry")

        text = metrics.to_prometheus_format()

        assert "# HELP cleanspot_sync_started_total Playlist syncs started" in text
        assert "# TYPE cleanspot_sync_started_total counter" in text
        assert "cleanspot_sync_started_total 2" in text
        assert 'cleanspot_webhook_events_total{outcome="processed",source="retry"} 1' in text

    def test_completed_sync_adds_track_counts(self) -> None:
        """Zero counts don't create empty series."""
        metrics = SyncMetrics()
        metrics.inc_sync_completed(tracks_added=3, tracks_removed=0)

        assert metrics.counter_value("sync_completed_total") == 1
        assert metrics.counter_value("sync_tracks_added_total") == 3
        assert "sync_tracks_removed_total" not in metrics.get_summary()["counters"]

    def test_histogram_exports_count_and_sum_per_label(self) -> None:
        """Durations are split by status."""
        metrics = SyncMetrics(prefix="test")
        metrics.observe_sync_duration(1.5, status="completed")
        metrics.observe_sync_duration(0.5, status="completed")
        metrics.observe_sync_duration(2.0, status="failed")

        text = metrics.to_prometheus_format()

        assert "# TYPE test_sync_duration_seconds histogram" in text
        assert 'test_sync_duration_seconds_count{status="completed"} 2' in text
        assert 'test_sync_duration_seconds_sum{status="completed"} 2.0' in text
        assert 'test_sync_duration_seconds_count{status="failed"} 1' in text

    def test_gauge_is_overwritten_not_summed(self) -> None:
        metrics = SyncMetrics()
        metrics.set_active_configs(4)
        metrics.set_active_configs(2)

        assert metrics.get_summary()["gauges"] == {"sync_active_configs": {"": 2.0}}

    def test_labels_distinguish_series(self) -> None:
        """active and inactive validations are separate series."""
        metrics = SyncMetrics()
        metrics.inc_subscription_validation(True)
        metrics.inc_subscription_validation(False)
        metrics.inc_subscription_validation(False)

        assert metrics.counter_value("subscription_validations_total", result="active") == 1
        assert metrics.counter_value("subscription_validations_total", result="inactive") == 2
        assert metrics.counter_value("subscription_validations_total") == 0

    def test_global_collector_reset(self) -> None:
        """reset drops the global instance so the next get starts from zero."""
        get_sync_metrics().inc_config_deactivated("subscription_inactive")
        reset_sync_metrics()

        assert get_sync_metrics().counter_value(
            "sync_configs_deactivated_total", reason="subscription_inactive"
        ) == 0
