"""Observability: structured logging, request correlation, tracing and metrics."""

from .logging import (
    configure_logging,
    correlation_scope,
    get_correlation_id,
    set_correlation_id,
)
from .metrics import SyncMetrics, get_sync_metrics, reset_sync_metrics
from .tracing import configure_tracing, get_tracer, instrument_fastapi, instrument_httpx

__all__ = [
    "SyncMetrics",
    "configure_logging",
    "configure_tracing",
    "correlation_scope",
    "get_correlation_id",
    "get_sync_metrics",
    "get_tracer",
    "instrument_fastapi",
    "instrument_httpx",
    "reset_sync_metrics",
    "set_correlation_id",
]
