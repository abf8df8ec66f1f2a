"""Ports (interfaces) for external collaborators.

Hey future me - this is the hexagonal seam! Application services depend ONLY on these
ABCs. The Spotify adapter in infrastructure/integrations implements them, and tests swap
in AsyncMock(spec=...) versions. Tokens passed in here are always PLAINTEXT access tokens,
already decrypted by the CredentialVault.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class CatalogTrack:
    """A track as the catalog provider describes it."""

    id: str
    name: str
    artist: str
    is_explicit: bool = False
    album: str | None = None
    duration_ms: int | None = None
    isrc: str | None = None


@dataclass(frozen=True)
class CatalogPlaylist:
    """Playlist metadata (no tracks)."""

    id: str
    name: str
    owner_id: str | None = None
    track_count: int = 0


@dataclass
class TokenGrant:
    """Result of a provider token refresh."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None  # only set when the provider rotated it
    scopes: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


class ICatalogProvider(ABC):
    """Music catalog / playlist provider capability."""

    @abstractmethod
    async def list_playlists(self, access_token: str) -> list[CatalogPlaylist]:
        """All playlists visible to the token's user."""

    @abstractmethod
    async def get_playlist(self, access_token: str, playlist_id: str) -> CatalogPlaylist | None:
        """Playlist metadata, or None if it doesn't exist / isn't visible."""

    @abstractmethod
    async def list_tracks(self, access_token: str, playlist_id: str) -> list[CatalogTrack]:
        """All tracks of a playlist in playlist order (pagination handled inside)."""

    @abstractmethod
    async def find_clean_alternative(
        self, access_token: str, track: CatalogTrack
    ) -> CatalogTrack | None:
        """Best non-explicit substitute for an explicit track, or None."""

    @abstractmethod
    async def create_playlist(
        self, access_token: str, name: str, description: str = ""
    ) -> str:
        """Create a playlist for the token's user and return its id."""

    @abstractmethod
    async def add_tracks(
        self, access_token: str, playlist_id: str, track_ids: list[str]
    ) -> None:
        """Append tracks (in the given order)."""

    @abstractmethod
    async def remove_tracks(
        self, access_token: str, playlist_id: str, track_ids: list[str]
    ) -> None:
        """Remove all occurrences of the given tracks."""


class ITokenRefresher(ABC):
    """Provider OAuth token endpoint (refresh_token grant only)."""

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Raises:
            TokenRefreshException: Provider rejected the refresh token
        """


class ISubscriptionChecker(ABC):
    """Answers "does this user currently pay?"."""

    @abstractmethod
    async def is_active(self, user_id: str) -> bool:
        """True when the user holds an active subscription right now."""


__all__ = [
    "CatalogPlaylist",
    "CatalogTrack",
    "ICatalogProvider",
    "ISubscriptionChecker",
    "ITokenRefresher",
    "TokenGrant",
]
