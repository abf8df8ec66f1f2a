"""External service integrations."""

from .spotify_client import SpotifyClient

__all__ = ["SpotifyClient"]
