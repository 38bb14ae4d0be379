"""
Build per-camera keypoints and pairwise matches from multi-view tracks.
"""

from __future__ import annotations

from itertools import combinations
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from sfm_match.corr.data_structures import CameraRecord, CorrespondenceSet, TrackObservation
from sfm_match.corr.keypoints import CoordinateIndex, ExactCoordinateIndex, KeypointTable
from sfm_match.corr.pair_codec import MAX_IMAGE_ID


def _make_cameras(
    num_cameras: int,
    camera_ids: Optional[Sequence[int]],
    index_factory: Callable[[], CoordinateIndex],
) -> List[CameraRecord]:
    if camera_ids is None:
        camera_ids = range(1, num_cameras + 1)
    camera_ids = [int(c) for c in camera_ids]

    if len(camera_ids) != num_cameras:
        raise ValueError(
            f"Got {len(camera_ids)} camera ids for {num_cameras} cameras"
        )
    seen = set()
    for cam_id in camera_ids:
        if cam_id < 1 or cam_id >= MAX_IMAGE_ID:
            raise ValueError(
                f"Camera id {cam_id} is outside the valid range [1, {MAX_IMAGE_ID})"
            )
        if cam_id in seen:
            raise ValueError(f"Camera id {cam_id} is used more than once")
        seen.add(cam_id)

    return [CameraRecord(cam_id, KeypointTable(index_factory())) for cam_id in camera_ids]


def assemble_correspondences(
    tracks: Iterable[TrackObservation],
    num_cameras: int,
    camera_ids: Optional[Sequence[int]] = None,
    index_factory: Callable[[], CoordinateIndex] = ExactCoordinateIndex,
) -> CorrespondenceSet:
    """
    Deduplicate keypoints per camera and collect matches for every camera pair.

    Tracks are consumed in order. For each track, every observed view looks
    up (or registers) its pixel coordinate in that camera's keypoint table;
    then each pair of observing cameras receives one (id_a, id_b) match.

    Args:
        tracks: Track observations, each with exactly `num_cameras` views.
        num_cameras: Number of cameras (view slots) per track.
        camera_ids: Optional camera identifiers per slot (default: slot + 1).
        index_factory: Callable returning a fresh coordinate index per camera;
                       controls which coordinates are merged into one keypoint.

    Returns:
        CorrespondenceSet with frozen keypoint tables and (M, 2) int32 match
        arrays for every slot pair (i, j), i < j.
    """
    if num_cameras < 0:
        raise ValueError(f"num_cameras must be non-negative, got {num_cameras}")
    cameras = _make_cameras(num_cameras, camera_ids, index_factory)

    pair_lists: Dict[Tuple[int, int], List[Tuple[int, int]]] = {
        (i, j): [] for i, j in combinations(range(num_cameras), 2)
    }

    num_tracks = 0
    for track_idx, track in enumerate(tracks):
        if track.num_views != num_cameras:
            raise ValueError(
                f"Track {track_idx} has {track.num_views} views, expected {num_cameras}"
            )

        ids = np.full(num_cameras, -1, dtype=np.int64)
        for view_id in track.observed_views():
            ids[view_id], _ = cameras[view_id].keypoints.lookup_or_insert(
                track.pixel_points[view_id]
            )

        visible = np.flatnonzero(ids >= 0)
        for i, j in combinations(visible, 2):
            pair_lists[(int(i), int(j))].append((int(ids[i]), int(ids[j])))
        num_tracks += 1

    for cam in cameras:
        cam.keypoints.freeze()

    pair_matches = {
        pair: np.array(rows, dtype=np.int32).reshape(-1, 2)
        for pair, rows in pair_lists.items()
    }

    print(f"[assemble] {num_tracks} tracks over {num_cameras} cameras")
    for slot, cam in enumerate(cameras):
        print(f"[assemble] camera {cam.id} (slot {slot}): {len(cam.keypoints)} keypoints")

    return CorrespondenceSet(cameras=cameras, pair_matches=pair_matches, num_tracks=num_tracks)


__all__ = ["assemble_correspondences"]
