"""Playlist diff for sync runs.

Hey future me - the diff is computed on the CLEAN identity of each source track, not on the
source id. An explicit track with a clean match lives in the target as the clean id, so
comparing source ids against target ids would "add" every replaced track again on every run.

    desired   = [mapping.playlist_track_id for each source track, in source order]
    to_add    = desired - target   (source order)
    to_remove = target - desired   (target order)
    unchanged = desired ∩ target

Source tracks with no mapping row yet are reported as new_tracks. The sync service matches
and persists them BEFORE calling calculate(), so by then every source track is mapped.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from cleanspot.domain.ports import CatalogTrack
from cleanspot.infrastructure.persistence.models import TrackMappingModel

logger = logging.getLogger(__name__)


@dataclass
class PlaylistDelta:
    """Result of diffing the desired target contents against the actual target."""

    desired: list[str] = field(default_factory=list)
    to_add: list[str] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_add or self.to_remove)


def _unique(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class PlaylistDeltaCalculator:
    """Pure functions over track lists, no I/O."""

    def find_new_tracks(
        self,
        source_tracks: Sequence[CatalogTrack],
        mappings: Sequence[TrackMappingModel],
    ) -> list[CatalogTrack]:
        """Source tracks with no mapping row yet (first occurrence only)."""
        known = {m.source_track_id for m in mappings}
        new_tracks: list[CatalogTrack] = []
        for track in source_tracks:
            if track.id in known:
                continue
            known.add(track.id)
            new_tracks.append(track)
        return new_tracks

    def calculate(
        self,
        source_tracks: Sequence[CatalogTrack],
        target_track_ids: Sequence[str],
        mappings: Sequence[TrackMappingModel],
    ) -> PlaylistDelta:
        by_source = {m.source_track_id: m for m in mappings}

        desired_ids: list[str] = []
        for track in source_tracks:
            mapping = by_source.get(track.id)
            # Unmapped means "not processed", keep the source track as-is
            desired_ids.append(mapping.playlist_track_id if mapping else track.id)
        desired = _unique(desired_ids)

        desired_set = set(desired)
        target = _unique(list(target_track_ids))
        target_set = set(target)

        delta = PlaylistDelta(
            desired=desired,
            to_add=[track_id for track_id in desired if track_id not in target_set],
            to_remove=[track_id for track_id in target if track_id not in desired_set],
            unchanged=[track_id for track_id in desired if track_id in target_set],
        )
        logger.debug(
            f"Delta: {len(delta.to_add)} to add, {len(delta.to_remove)} to remove, "
            f"{len(delta.unchanged)} unchanged"
        )
        return delta
