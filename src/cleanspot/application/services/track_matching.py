"""Track Matching Port - explicit track in, clean alternative (or nothing) out."""

import logging

from cleanspot.domain.ports import CatalogTrack, ICatalogProvider

logger = logging.getLogger(__name__)


class TrackMatcher:
    """Stateless wrapper around the catalog's clean-alternative search.

    The similarity heuristic lives in the catalog adapter. This class only enforces
    the contract every caller relies on:
    - non-explicit tracks never hit the provider (they don't need a substitute)
    - a returned candidate is never explicit and never the source track itself
    """

    def __init__(self, catalog: ICatalogProvider) -> None:
        self._catalog = catalog

    async def match(self, access_token: str, track: CatalogTrack) -> CatalogTrack | None:
        if not track.is_explicit:
            return None

        candidate = await self._catalog.find_clean_alternative(access_token, track)
        if candidate is None:
            return None
        if candidate.is_explicit or candidate.id == track.id:
            logger.warning(
                f"Catalog returned unusable clean candidate {candidate.id} for {track.id}, ignoring"
            )
            return None
        return candidate
