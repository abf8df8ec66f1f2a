"""Dependency injection for API endpoints."""

from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.application.services.clean_playlist_job_service import (
    CleanPlaylistJobService,
)
from cleanspot.application.services.playlist_sync_service import SyncService
from cleanspot.application.services.webhook_service import WebhookService
from cleanspot.infrastructure.container import ServiceContainer
from cleanspot.infrastructure.persistence.database import Database


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session from app state.

    session_scope() commits on success and rolls back on error. Services commit
    themselves, so the final commit here is usually a no-op.
    """
    db: Database = request.app.state.db
    async with db.session_scope() as session:
        yield session


def get_container(request: Request) -> ServiceContainer:
    container: ServiceContainer = request.app.state.container
    return container


# Hey future me - authentication happens upstream (gateway / identity provider). By the
# time a request reaches us the verified subject is in X-User-Id. No header → 401.
async def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return user_id


async def get_job_service(
    session: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> CleanPlaylistJobService:
    return container.job_service(session)


async def get_sync_service(
    session: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> SyncService:
    return container.sync_service(session)


async def get_webhook_service(
    session: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> WebhookService:
    return container.webhook_service(session)
