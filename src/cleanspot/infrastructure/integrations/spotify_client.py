"""Spotify Web API adapter for the catalog provider and token refresher ports."""

import logging
import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, cast

import httpx
from rapidfuzz import fuzz

from cleanspot.config.settings import MatchingSettings, SpotifySettings
from cleanspot.domain.exceptions import (
    CredentialError,
    ExternalServiceError,
    RateLimitExceededError,
    TokenRefreshException,
)
from cleanspot.domain.ports import (
    CatalogPlaylist,
    CatalogTrack,
    ICatalogProvider,
    ITokenRefresher,
    TokenGrant,
)
from cleanspot.infrastructure.rate_limiter import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

# Spotify caps playlist add/remove bodies at 100 URIs
MAX_TRACKS_PER_MUTATION = 100

# "(feat. X)", "[Explicit]", "- Clean" and friends shouldn't affect title similarity
_TITLE_NOISE = re.compile(
    r"\s*[\(\[](feat\.?|ft\.?|featuring|explicit|clean|radio edit)[^\)\]]*[\)\]]"
    r"|\s+-\s+(clean|explicit|radio edit)\s*$",
    re.IGNORECASE,
)


def _normalize_title(title: str) -> str:
    return _TITLE_NOISE.sub("", title).lower().strip()


def _track_uri(track_id: str) -> str:
    return track_id if track_id.startswith("spotify:") else f"spotify:track:{track_id}"


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


# Retry-After is either delta-seconds or an HTTP-date. Anything unreadable means "unknown".
def _parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Ignoring unparseable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - (now or datetime.now(UTC))).total_seconds())


class SpotifyClient(ICatalogProvider, ITokenRefresher):
    """HTTP client for the Spotify Web API."""

    # Hey future me, we DON'T create the httpx client in __init__ - it gets lazy-loaded in
    # _get_client() inside the running loop. Tests pass a client built on httpx.MockTransport
    # and a roomy RateLimiter so nothing ever sleeps.
    def __init__(
        self,
        settings: SpotifySettings,
        matching: MatchingSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.settings = settings
        self.matching = matching or MatchingSettings()
        self._client = http_client
        self._rate_limiter = rate_limiter or get_rate_limiter("spotify")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SpotifyClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Hey future me - CENTRALIZED API REQUEST! Every catalog call goes through here:
    # - token bucket before each request (shared across all workers)
    # - 429 → adaptive backoff honouring Retry-After, up to max_retries
    # - transport failures → ExternalServiceError (transient, the job engine retries the batch)
    # - 401 → CredentialError (token is dead, reconnect required, NOT transient)
    # - other 5xx/4xx → ExternalServiceError with the status code attached
    # 404 is returned as-is: callers like get_playlist() turn it into None.
    async def _api_request(
        self,
        method: str,
        path: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        max_retries: int = 3,
    ) -> httpx.Response:
        client = await self._get_client()
        url = path if path.startswith("http") else f"{self.settings.api_base_url}{path}"
        headers = {"Authorization": f"Bearer {access_token}"}

        for attempt in range(max_retries + 1):
            try:
                async with self._rate_limiter:
                    response = await client.request(
                        method, url, params=params, json=json, headers=headers
                    )
            except httpx.TransportError as e:
                raise ExternalServiceError(
                    f"Spotify API unreachable: {type(e).__name__}", service="spotify"
                ) from e

            if response.status_code != 429:
                break

            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            if attempt >= max_retries:
                logger.error(
                    f"Spotify API rate limited (429) after {max_retries} retries: {method} {path}"
                )
                raise RateLimitExceededError(
                    "Spotify rate limit exceeded", retry_after=retry_after
                )
            wait_time = await self._rate_limiter.handle_rate_limit_response(retry_after)
            logger.warning(
                f"Spotify 429 (attempt {attempt + 1}/{max_retries}): "
                f"waited {wait_time:.1f}s, retrying {path}"
            )

        if response.status_code == 401:
            raise CredentialError(
                "Spotify rejected the access token. Please reconnect your account.",
                provider="spotify",
            )
        if response.status_code >= 400 and response.status_code != 404:
            raise ExternalServiceError(
                f"Spotify API error: {response.status_code} on {method} {path}",
                service="spotify",
                status_code=response.status_code,
            )
        return response

    # =========================================================================
    # ITokenRefresher
    # =========================================================================

    # Listen up - Spotify returns 400 {"error": "invalid_grant"} when a refresh token is
    # revoked. That's "reconnect required", everything else non-2xx is a service error.
    # Spotify usually does NOT rotate refresh tokens, so refresh_token is often absent.
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        client = await self._get_client()
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.settings.client_id,
        }
        auth = None
        if self.settings.client_secret:
            auth = httpx.BasicAuth(self.settings.client_id, self.settings.client_secret)

        try:
            response = await client.post(
                self.settings.token_url,
                data=data,
                auth=auth,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.TransportError as e:
            raise ExternalServiceError(
                f"Spotify token endpoint unreachable: {type(e).__name__}", service="spotify"
            ) from e

        if response.status_code == 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            if error_data.get("error") == "invalid_grant":
                description = error_data.get(
                    "error_description", "Refresh token is invalid or has been revoked"
                )
                raise TokenRefreshException(
                    message=f"Refresh token invalid: {description}. Please reconnect your account.",
                    error_code="invalid_grant",
                    http_status=400,
                )

        if response.status_code in (401, 403):
            raise TokenRefreshException(
                message="Spotify access denied. Please reconnect your account.",
                error_code="access_denied",
                http_status=response.status_code,
            )

        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Spotify token refresh failed: {response.status_code}",
                service="spotify",
                status_code=response.status_code,
            )

        try:
            payload = cast(dict[str, Any], response.json())
            return TokenGrant(
                access_token=str(payload["access_token"]),
                expires_in=int(payload.get("expires_in", 3600)),
                refresh_token=payload.get("refresh_token"),
                scopes=(payload.get("scope") or "").split(),
                raw=payload,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ExternalServiceError(
                f"Spotify token endpoint returned an unusable body ({type(e).__name__})",
                service="spotify",
                status_code=response.status_code,
            ) from e

    # =========================================================================
    # ICatalogProvider
    # =========================================================================

    async def list_playlists(self, access_token: str) -> list[CatalogPlaylist]:
        playlists: list[CatalogPlaylist] = []
        next_url: str | None = "/me/playlists"
        params: dict[str, Any] | None = {"limit": 50}
        while next_url:
            response = await self._api_request("GET", next_url, access_token, params=params)
            page = cast(dict[str, Any], response.json())
            for item in page.get("items", []):
                if item:
                    playlists.append(self._to_playlist(item))
            next_url = page.get("next")
            params = None  # "next" already carries offset/limit
        return playlists

    async def get_playlist(self, access_token: str, playlist_id: str) -> CatalogPlaylist | None:
        try:
            response = await self._api_request(
                "GET",
                f"/playlists/{playlist_id}",
                access_token,
                params={"fields": "id,name,owner(id),tracks(total)"},
            )
        except ExternalServiceError as e:
            # Private playlist of another user
            if e.status_code == 403:
                return None
            raise
        if response.status_code == 404:
            return None
        return self._to_playlist(cast(dict[str, Any], response.json()))

    # Hey future me - Spotify paginates playlist tracks at 100. We follow "next" until it's
    # null. Items can have track=null (deleted) or local files without ids - those can't be
    # matched or re-added anywhere, so they're skipped.
    async def list_tracks(self, access_token: str, playlist_id: str) -> list[CatalogTrack]:
        tracks: list[CatalogTrack] = []
        next_url: str | None = f"/playlists/{playlist_id}/tracks"
        params: dict[str, Any] | None = {"limit": 100, "offset": 0}
        while next_url:
            response = await self._api_request("GET", next_url, access_token, params=params)
            if response.status_code == 404:
                raise ExternalServiceError(
                    f"Playlist {playlist_id} not found", service="spotify", status_code=404
                )
            page = cast(dict[str, Any], response.json())
            for item in page.get("items", []):
                track = (item or {}).get("track")
                if not track or not track.get("id") or item.get("is_local"):
                    continue
                tracks.append(self._to_track(track))
            next_url = page.get("next")
            params = None
        return tracks

    async def find_clean_alternative(
        self, access_token: str, track: CatalogTrack
    ) -> CatalogTrack | None:
        title = _normalize_title(track.name)
        query = f'track:"{title}" artist:"{track.artist}"'
        response = await self._api_request(
            "GET",
            "/search",
            access_token,
            params={"q": query, "type": "track", "limit": self.matching.search_limit},
        )
        items = cast(dict[str, Any], response.json()).get("tracks", {}).get("items", [])

        best: CatalogTrack | None = None
        best_score = 0.0
        for item in items:
            if not item or not item.get("id") or item.get("explicit"):
                continue
            candidate = self._to_track(item)
            if candidate.id == track.id:
                continue
            score = self._score_candidate(track, candidate)
            if score >= self.matching.similarity_threshold and score > best_score:
                best, best_score = candidate, score

        if best is not None:
            logger.debug(f"Clean match for '{track.name}': '{best.name}' ({best_score:.0f})")
        return best

    # Title counts 60%, artist 40%. Same artist with the wrong song is useless.
    # Durations within 5s add a small bonus.
    @staticmethod
    def _score_candidate(original: CatalogTrack, candidate: CatalogTrack) -> float:
        title_score = fuzz.token_sort_ratio(
            _normalize_title(original.name), _normalize_title(candidate.name)
        )
        artist_score = fuzz.partial_ratio(original.artist.lower(), candidate.artist.lower())
        score = title_score * 0.6 + artist_score * 0.4
        if original.duration_ms and candidate.duration_ms:
            if abs(original.duration_ms - candidate.duration_ms) <= 5000:
                score = min(100.0, score + 5)
        return score

    async def create_playlist(
        self, access_token: str, name: str, description: str = ""
    ) -> str:
        me = await self._api_request("GET", "/me", access_token)
        user_id = cast(dict[str, Any], me.json())["id"]
        response = await self._api_request(
            "POST",
            f"/users/{user_id}/playlists",
            access_token,
            json={"name": name, "description": description, "public": False},
        )
        playlist_id = cast(dict[str, Any], response.json())["id"]
        logger.info(f"Created Spotify playlist {playlist_id} ('{name}')")
        return cast(str, playlist_id)

    async def add_tracks(
        self, access_token: str, playlist_id: str, track_ids: list[str]
    ) -> None:
        for chunk in _chunks(track_ids, MAX_TRACKS_PER_MUTATION):
            await self._api_request(
                "POST",
                f"/playlists/{playlist_id}/tracks",
                access_token,
                json={"uris": [_track_uri(t) for t in chunk]},
            )

    async def remove_tracks(
        self, access_token: str, playlist_id: str, track_ids: list[str]
    ) -> None:
        for chunk in _chunks(track_ids, MAX_TRACKS_PER_MUTATION):
            await self._api_request(
                "DELETE",
                f"/playlists/{playlist_id}/tracks",
                access_token,
                json={"tracks": [{"uri": _track_uri(t)} for t in chunk]},
            )

    # =========================================================================
    # Mapping helpers
    # =========================================================================

    @staticmethod
    def _to_track(data: dict[str, Any]) -> CatalogTrack:
        artists = data.get("artists") or []
        return CatalogTrack(
            id=data["id"],
            name=data.get("name") or "Unknown",
            artist=", ".join(a.get("name", "") for a in artists if a) or "Unknown",
            is_explicit=bool(data.get("explicit", False)),
            album=(data.get("album") or {}).get("name"),
            duration_ms=data.get("duration_ms"),
            isrc=(data.get("external_ids") or {}).get("isrc"),
        )

    @staticmethod
    def _to_playlist(data: dict[str, Any]) -> CatalogPlaylist:
        return CatalogPlaylist(
            id=data["id"],
            name=data.get("name") or "",
            owner_id=(data.get("owner") or {}).get("id"),
            track_count=int((data.get("tracks") or {}).get("total", 0)),
        )
