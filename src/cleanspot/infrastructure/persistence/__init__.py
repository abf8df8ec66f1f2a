"""Persistence layer: database, ORM models and repositories."""

from .database import Database
from .models import Base, ensure_utc_aware, utc_now

__all__ = ["Base", "Database", "ensure_utc_aware", "utc_now"]
