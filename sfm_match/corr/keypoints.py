"""
Per-camera keypoint deduplication.

A KeypointTable hands out dense integer ids (0, 1, 2, ...) to pixel
coordinates in order of first appearance. Which coordinates count as "the
same" keypoint is decided by a coordinate index:

- ExactCoordinateIndex compares the float32 bit patterns of (u, v). Two
  observations that differ only by rounding noise become distinct keypoints.
- ToleranceCoordinateIndex merges coordinates closer than a pixel radius.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Dict, List, Optional, Protocol, Tuple

import numpy as np


def _as_float32_pair(coord) -> np.ndarray:
    point = np.asarray(coord, dtype=np.float32).reshape(-1)
    if point.shape != (2,):
        raise ValueError(f"Expected a (u, v) coordinate, got shape {np.shape(coord)}")
    return point


class CoordinateIndex(Protocol):
    """Maps float32 (u, v) coordinates to the keypoint ids they resolve to."""

    def find(self, point: np.ndarray) -> Optional[int]:
        ...

    def add(self, point: np.ndarray, keypoint_id: int) -> None:
        ...


class ExactCoordinateIndex:
    """Bit-for-bit equality on the float32 representation of (u, v)."""

    def __init__(self) -> None:
        self._ids: Dict[bytes, int] = {}

    def find(self, point: np.ndarray) -> Optional[int]:
        return self._ids.get(point.tobytes())

    def add(self, point: np.ndarray, keypoint_id: int) -> None:
        self._ids[point.tobytes()] = keypoint_id


class ToleranceCoordinateIndex:
    """
    Treat coordinates within `tolerance` pixels (Euclidean) as one keypoint.

    Points are bucketed on a grid whose cell size equals the tolerance, so a
    lookup only has to scan the 3x3 block of cells around the query. When
    several registered keypoints are in range, the earliest one wins.
    """

    def __init__(self, tolerance: float) -> None:
        if not tolerance > 0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")
        self.tolerance = float(tolerance)
        self._cells: Dict[Tuple[int, int], List[Tuple[float, float, int]]] = defaultdict(list)

    def _cell(self, u: float, v: float) -> Tuple[int, int]:
        return math.floor(u / self.tolerance), math.floor(v / self.tolerance)

    def find(self, point: np.ndarray) -> Optional[int]:
        u, v = float(point[0]), float(point[1])
        cu, cv = self._cell(u, v)
        best = None
        for du in (-1, 0, 1):
            for dv in (-1, 0, 1):
                for pu, pv, keypoint_id in self._cells.get((cu + du, cv + dv), ()):
                    if math.hypot(pu - u, pv - v) <= self.tolerance:
                        if best is None or keypoint_id < best:
                            best = keypoint_id
        return best

    def add(self, point: np.ndarray, keypoint_id: int) -> None:
        u, v = float(point[0]), float(point[1])
        self._cells[self._cell(u, v)].append((u, v, keypoint_id))


class KeypointTable:
    """
    Dense id assignment for the keypoints of one camera.

    Ids are assigned in strictly increasing order of first occurrence, with
    no gaps. The coordinate stored for an id is the first one that created it.
    """

    def __init__(self, index: Optional[CoordinateIndex] = None) -> None:
        self._index = index if index is not None else ExactCoordinateIndex()
        self._points: List[np.ndarray] = []
        self._frozen = False

    def lookup_or_insert(self, coord) -> Tuple[int, bool]:
        """
        Return the id of `coord`, registering it first if it is new.

        Args:
            coord: Pixel coordinate (u, v); stored as float32.

        Returns:
            Tuple of (keypoint_id, inserted) where inserted is True if the
            coordinate was not in the table before.
        """
        point = _as_float32_pair(coord)
        keypoint_id = self._index.find(point)
        if keypoint_id is not None:
            return keypoint_id, False

        if self._frozen:
            raise RuntimeError("Keypoint table is frozen; no new keypoints can be added")
        keypoint_id = len(self._points)
        self._index.add(point, keypoint_id)
        self._points.append(point)
        return keypoint_id, True

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._points)

    def coordinates(self) -> np.ndarray:
        """Return an (N, 2) float32 array; row k is the coordinate of id k."""
        if not self._points:
            return np.zeros((0, 2), dtype=np.float32)
        return np.vstack(self._points).astype(np.float32)


__all__ = ["CoordinateIndex", "ExactCoordinateIndex", "ToleranceCoordinateIndex", "KeypointTable"]
