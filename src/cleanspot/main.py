"""FastAPI application factory.

Run with ``uvicorn cleanspot.main:app`` or ``uvicorn --factory cleanspot.main:create_app``.
"""

from fastapi import FastAPI

from cleanspot import __version__
from cleanspot.api import api_router
from cleanspot.api.exception_handlers import register_exception_handlers
from cleanspot.api.routers import health
from cleanspot.config import Settings, get_settings
from cleanspot.infrastructure.lifecycle import lifespan
from cleanspot.infrastructure.observability import instrument_fastapi
from cleanspot.infrastructure.observability.middleware import RequestLoggingMiddleware


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Explicit settings (tests). Defaults to get_settings() at startup.
    """
    resolved = settings or get_settings()
    app = FastAPI(
        title=resolved.app_name,
        version=__version__,
        debug=resolved.debug,
        lifespan=lifespan,
    )
    if settings is not None:
        app.state.settings = settings

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(api_router, prefix="/api")

    if resolved.observability.tracing_enabled:
        instrument_fastapi(app)
    return app


app = create_app()
