"""
Synthetic track observations from random 3D points and known cameras.

Used to test calibration/reconstruction against ground truth: random points
are projected through ground-truth projection matrices, perturbed by a
configurable pixel error, and kept in every view where they land inside the
image.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from sfm_match.corr.data_structures import TrackObservation


@dataclass
class SyntheticConfig:
    """Parameters of the random point generator."""

    # Number of tracks to generate.
    max_points: int = 1000
    # Integer sampling range (inclusive) of the X, Y and Z axes.
    axis_range: Tuple[Tuple[int, int], ...] = ((-2000, 2000), (-2000, 2000), (0, 2000))
    # Noise added to each pixel coordinate is uniform in [pixel_error - 1, pixel_error).
    pixel_error: float = 1.0
    # (min, max) number of cameras observing a track, used when is_track_exp is set.
    track_range: Tuple[int, int] = (2, 4)
    is_track_exp: bool = False
    # Image (width, height); projections outside are not observed.
    image_size: Tuple[int, int] = (1920, 1080)
    # Place points past the first `inner_points` on a ring around the rig.
    has_circle: bool = False
    inner_points: int = 100
    ring_radius: float = 40000.0
    ring_thickness: float = 2000.0
    ring_height: float = 2500.0
    # Resampling attempts per point before giving up.
    max_attempts: int = 10000
    seed: Optional[int] = None


def load_projection_matrices(xml_path: str, num_cameras: int) -> List[np.ndarray]:
    """
    Load ground-truth projection matrices written by OpenCV's FileStorage.

    Args:
        xml_path: printf-style path template taking the camera index,
                  e.g. "./xml_gt/%d.xml".
        num_cameras: Number of cameras to load (indices 0..num_cameras-1).

    Returns:
        List of (3, 4) float64 projection matrices (top three rows of node "P").
    """
    matrices = []
    for cam_id in range(num_cameras):
        path = xml_path % cam_id
        if not Path(path).exists():
            raise FileNotFoundError(f"Projection matrix file not found: {path}")

        fs = cv2.FileStorage(path, cv2.FILE_STORAGE_READ)
        P = fs.getNode("P").mat()
        fs.release()

        if P is None or P.ndim != 2 or P.shape[0] < 3 or P.shape[1] != 4:
            raise ValueError(f"{path}: node 'P' must be a 3x4 or 4x4 matrix")
        matrices.append(np.asarray(P[:3], dtype=np.float64))
    return matrices


class SyntheticObservationSource:
    """Generate random tracks by projecting random 3D points into every camera."""

    def __init__(
        self,
        projections: Sequence[np.ndarray],
        config: SyntheticConfig | None = None,
    ) -> None:
        self.config = config or SyntheticConfig()
        self.projections = np.array(
            [np.asarray(P, dtype=np.float64).reshape(3, 4) for P in projections]
        ).reshape(-1, 3, 4)
        self.num_views = len(self.projections)

        lo, hi = self.config.track_range
        if lo > hi:
            raise ValueError(f"Invalid track_range {self.config.track_range}: min > max")
        if len(self.config.axis_range) != 3:
            raise ValueError("axis_range needs one (min, max) range per axis (X, Y, Z)")

    @classmethod
    def from_xml(
        cls,
        xml_path: str,
        num_cameras: int,
        config: SyntheticConfig | None = None,
    ) -> "SyntheticObservationSource":
        return cls(load_projection_matrices(xml_path, num_cameras), config)

    def _sample_point(self, rng: np.random.Generator, point_idx: int) -> np.ndarray:
        cfg = self.config
        if cfg.has_circle and point_idx >= cfg.inner_points:
            inner = cfg.ring_radius
            outer = cfg.ring_radius + cfg.ring_thickness
            while True:
                x, y = rng.uniform(-outer, outer, size=2)
                if inner**2 <= x**2 + y**2 <= outer**2:
                    break
            z = rng.uniform(0.0, cfg.ring_height)
            return np.array([x, y, z, 1.0])

        xyz = [rng.integers(lo, hi, endpoint=True) for lo, hi in cfg.axis_range]
        return np.array([*xyz, 1.0], dtype=np.float64)

    def project(
        self,
        point_h: np.ndarray,
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Project a homogeneous 3D point into every camera and add pixel noise.

        Returns:
            Tuple of (uv, visible) where:
            - uv: (N, 2) float32 noisy pixel coordinates.
            - visible: (N,) bool, True where the point is in front of the
              camera and inside the image.
        """
        cfg = self.config
        proj = self.projections @ point_h  # (N, 3)
        depth = proj[:, 2]
        with np.errstate(divide="ignore", invalid="ignore"):
            uv = proj[:, :2] / depth[:, None]
        uv = uv + rng.uniform(cfg.pixel_error - 1, cfg.pixel_error, size=uv.shape)
        uv = uv.astype(np.float32)

        w, h = cfg.image_size
        visible = (
            (depth > 0)
            & (uv[:, 0] >= 0)
            & (uv[:, 0] < w)
            & (uv[:, 1] >= 0)
            & (uv[:, 1] < h)
        )
        return uv, visible

    def _try_point(self, rng: np.random.Generator, point_idx: int) -> Optional[TrackObservation]:
        cfg = self.config
        uv, visible = self.project(self._sample_point(rng, point_idx), rng)
        num_visible = int(visible.sum())

        if not cfg.is_track_exp:
            if num_visible < 2:
                return None
        else:
            lo, hi = cfg.track_range
            if num_visible < lo:
                return None

        track = TrackObservation.empty(self.num_views)
        for view_id in np.flatnonzero(visible):
            track.fill(view_id, uv[view_id, 0], uv[view_id, 1])

        if cfg.is_track_exp and num_visible > hi:
            # Too many observers: hide random views down to a drawn length.
            target = int(rng.integers(lo, hi, endpoint=True))
            hidden = rng.choice(np.flatnonzero(visible), size=num_visible - target, replace=False)
            for view_id in hidden:
                track.clear(view_id)
        return track

    def observations(self) -> List[TrackObservation]:
        cfg = self.config
        rng = np.random.default_rng(cfg.seed)

        tracks: List[TrackObservation] = []
        for point_idx in range(cfg.max_points):
            for _ in range(cfg.max_attempts):
                track = self._try_point(rng, point_idx)
                if track is not None:
                    tracks.append(track)
                    break
            else:
                raise RuntimeError(
                    f"Point {point_idx}: no valid projection after {cfg.max_attempts} "
                    "attempts. Check axis_range, track_range and the camera matrices."
                )

        lengths = [len(t.observed_views()) for t in tracks]
        print(
            f"[synthetic] Generated {len(tracks)} tracks over {self.num_views} cameras "
            f"(mean track length {np.mean(lengths) if lengths else 0:.2f})"
        )
        return tracks


__all__ = ["SyntheticConfig", "SyntheticObservationSource", "load_projection_matrices"]
