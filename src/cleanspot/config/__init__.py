"""Configuration module for CleanSpot."""

from .settings import (
    DatabaseSettings,
    JobSettings,
    MatchingSettings,
    ObservabilitySettings,
    SecuritySettings,
    Settings,
    SpotifySettings,
    SyncSettings,
    WebhookSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "JobSettings",
    "MatchingSettings",
    "ObservabilitySettings",
    "SecuritySettings",
    "Settings",
    "SpotifySettings",
    "SyncSettings",
    "WebhookSettings",
    "get_settings",
]
