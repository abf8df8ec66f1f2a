"""API router initialization."""

# Hey future me, this is the MAIN API router aggregator. It gets mounted at /api in main.py,
# so endpoints end up as /api/jobs, /api/sync/..., /api/webhooks/payments, /api/metrics.
# Each router file defines its own prefix. health is NOT in here - liveness checks hit /health at the root.

from fastapi import APIRouter

from cleanspot.api.routers import health, jobs, metrics, sync, webhooks

api_router = APIRouter()

api_router.include_router(jobs.router, tags=["Jobs"])
api_router.include_router(sync.router, tags=["Sync"])
api_router.include_router(webhooks.router, tags=["Webhooks"])
api_router.include_router(metrics.router, tags=["Metrics"])

__all__ = ["api_router", "health", "jobs", "metrics", "sync", "webhooks"]
