"""Health check endpoint for Docker/Kubernetes liveness and readiness checks."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text

from cleanspot import __version__

router = APIRouter(tags=["health"])


class HealthStatus(BaseModel):
    """Overall health status response."""

    status: str = Field(description="healthy or unhealthy")
    timestamp: str = Field(description="ISO timestamp of health check")
    version: str = Field(default=__version__)
    checks: dict[str, Any] = Field(default_factory=dict)


@router.get("/health", response_model=HealthStatus)
async def health(request: Request) -> JSONResponse:
    """DB connectivity plus background worker stats. 503 when the DB is unreachable."""
    checks: dict[str, Any] = {}
    healthy = True

    try:
        async with request.app.state.db.session_scope() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = {"status": "ok"}
    except Exception as e:
        healthy = False
        checks["database"] = {"status": "error", "error": str(e)}

    for name in ("job_pool", "sync_scheduler", "webhook_retry_worker"):
        worker = getattr(request.app.state, name, None)
        if worker is not None:
            checks[name] = worker.get_stats()

    body = HealthStatus(
        status="healthy" if healthy else "unhealthy",
        timestamp=datetime.now(UTC).isoformat(),
        checks=checks,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(mode="json"),
    )
