"""HTTP surface for CleanSpot.

The entry point is `api_router` from routers/, mounted under /api in main.py.

- routers/: endpoints (jobs, sync, webhooks, health)
- schemas/: Pydantic request/response models
- dependencies.py: dependency injection (session, container, services, current user)
- exception_handlers.py: domain exception → HTTP status mapping
"""

from cleanspot.api.routers import api_router

__all__ = ["api_router"]
