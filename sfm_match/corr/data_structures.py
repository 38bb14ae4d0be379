"""
Shared core data structures for correspondence assembly.

These containers are passed between:
- the observation producers (ChArUco detection, synthetic points)
- the correspondence assembler
- the database / text exporters
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from sfm_match.corr.keypoints import KeypointTable

# Pixel value marking a view in which the track was not observed.
ABSENT = -1.0


@dataclass
class TrackObservation:
    """
    One physical 3D point as seen by every camera of the rig.

    pixel_points: (N, 2) float32 array, row i is the (u, v) pixel coordinate
    in view i, or (-1, -1) when view i did not observe the point.
    """

    pixel_points: np.ndarray

    @classmethod
    def empty(cls, num_views: int) -> "TrackObservation":
        return cls(np.full((num_views, 2), ABSENT, dtype=np.float32))

    @classmethod
    def from_points(
        cls,
        points: Sequence[Optional[Tuple[float, float]]],
    ) -> "TrackObservation":
        """Build a track from a per-view list of (u, v) tuples or None."""
        track = cls.empty(len(points))
        for view_id, point in enumerate(points):
            if point is not None:
                track.fill(view_id, point[0], point[1])
        return track

    def fill(self, view_id: int, u: float, v: float) -> None:
        self.pixel_points[view_id] = (u, v)

    def clear(self, view_id: int) -> None:
        self.pixel_points[view_id] = (ABSENT, ABSENT)

    @property
    def num_views(self) -> int:
        return len(self.pixel_points)

    def observed_views(self) -> List[int]:
        return [int(i) for i in np.flatnonzero(self.pixel_points[:, 0] >= 0)]


@dataclass
class CameraRecord:
    """A camera (COLMAP image) and the keypoints it has seen."""

    id: int
    keypoints: KeypointTable = field(default_factory=KeypointTable)


@dataclass
class CorrespondenceSet:
    """
    Output of the assembler: per-camera keypoints and per-pair matches.

    pair_matches is keyed by camera slot pairs (i, j) with i < j. Each value is
    an (M, 2) int32 array of (id_in_i, id_in_j) rows in track order.
    """

    cameras: List[CameraRecord] = field(default_factory=list)
    pair_matches: Dict[Tuple[int, int], np.ndarray] = field(default_factory=dict)
    num_tracks: int = 0

    @property
    def num_cameras(self) -> int:
        return len(self.cameras)

    def slots_by_id(self) -> List[int]:
        return sorted(range(len(self.cameras)), key=lambda slot: self.cameras[slot].id)

    def pairs(self) -> Iterator[Tuple[int, int]]:
        """Yield every slot pair (a, b) with id_a < id_b, ordered by camera id."""
        order = self.slots_by_id()
        for pos, a in enumerate(order):
            for b in order[pos + 1:]:
                yield a, b

    def matches(self, slot_a: int, slot_b: int) -> np.ndarray:
        """Match table for two camera slots, columns ordered as (a, b)."""
        if slot_a == slot_b:
            raise ValueError(f"A camera has no matches with itself (slot {slot_a})")
        if slot_a < slot_b:
            return self.pair_matches.get(
                (slot_a, slot_b), np.zeros((0, 2), dtype=np.int32)
            )
        return self.matches(slot_b, slot_a)[:, ::-1]


__all__ = ["ABSENT", "TrackObservation", "CameraRecord", "CorrespondenceSet"]
