"""API fixtures: the real app wired to the test database and the fake catalog.

ASGITransport doesn't run the lifespan, so app.state is filled in by hand here. No job pool
is attached, which means submitted jobs stay PENDING unless a test processes them itself.
"""

from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from cleanspot.infrastructure.container import ServiceContainer
from cleanspot.main import create_app


@pytest.fixture
def container(settings, encryption, catalog, broadcaster) -> ServiceContainer:
    return ServiceContainer(
        settings=settings,
        encryption=encryption,
        catalog=catalog,
        broadcaster=broadcaster,
    )


@pytest.fixture
def app(settings, db, container) -> FastAPI:
    application = create_app(settings)
    application.state.db = db
    application.state.container = container
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
