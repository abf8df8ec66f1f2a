"""Metrics endpoints for Prometheus scraping.

Hey future me - GET /api/metrics is the scrape target, /api/metrics/json is the same data
for a human with curl. Neither needs X-User-Id: these are operator endpoints, keep them
off the public ingress.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.api.dependencies import get_db_session
from cleanspot.infrastructure.observability.metrics import SyncMetrics, get_sync_metrics
from cleanspot.infrastructure.persistence.repositories import SyncConfigRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/metrics")


async def _refresh_gauges(session: AsyncSession) -> SyncMetrics:
    metrics = get_sync_metrics()
    try:
        metrics.set_active_configs(await SyncConfigRepository(session).count_active())
    except Exception as e:
        logger.warning(f"Failed to update active sync config gauge: {e}")
    return metrics


@router.get("", response_class=PlainTextResponse)
async def get_prometheus_metrics(session: AsyncSession = Depends(get_db_session)) -> str:
    """Sync and webhook metrics in Prometheus text exposition format."""
    metrics = await _refresh_gauges(session)
    return metrics.to_prometheus_format()


@router.get("/json")
async def get_metrics_json(session: AsyncSession = Depends(get_db_session)) -> dict[str, Any]:
    metrics = await _refresh_gauges(session)
    return metrics.get_summary()
