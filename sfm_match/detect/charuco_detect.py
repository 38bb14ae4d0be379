"""
Track observations from ChArUco boards seen by a multi-camera rig.

The rig captures the board in several poses ("groups"). Every inner corner
of the board in every group is one track; its observation in view i is the
sub-pixel corner location detected in camera i's image of that group.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Mapping, Optional, Tuple

import cv2
import numpy as np

from sfm_match.corr.data_structures import TrackObservation

# Board geometry; change to match the printed board.
BOARD_SQUARES = (10, 10)
SQUARE_LENGTH = 0.1
MARKER_LENGTH = 0.078
CORNERS_PER_BOARD = (BOARD_SQUARES[0] - 1) * (BOARD_SQUARES[1] - 1)

SUBPIX_CRITERIA = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 40, 0.001)


def make_charuco_board(legacy_pattern: bool = True) -> "cv2.aruco.CharucoBoard":
    """
    Build the rig's ChArUco board definition.

    Args:
        legacy_pattern: Use the square layout of boards generated before
                        OpenCV 4.6. It differs from the current layout for
                        boards with an even number of rows, such as 10x10.
    """
    dictionary = cv2.aruco.getPredefinedDictionary(cv2.aruco.DICT_7X7_50)
    board = cv2.aruco.CharucoBoard(BOARD_SQUARES, SQUARE_LENGTH, MARKER_LENGTH, dictionary)
    board.setLegacyPattern(legacy_pattern)
    return board


def detect_charuco_corners(
    gray: np.ndarray,
    board: Optional["cv2.aruco.CharucoBoard"] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Detect ChArUco inner corners in a grayscale image.

    Args:
        gray: Grayscale image (H, W), dtype=uint8.
        board: Board definition (default: make_charuco_board()).

    Returns:
        Tuple of (corners, ids) where:
        - corners: (K, 2) float32 sub-pixel corner coordinates.
        - ids: (K,) int array of corner ids in [0, CORNERS_PER_BOARD).
    """
    if board is None:
        board = make_charuco_board()

    detector = cv2.aruco.CharucoDetector(board)
    charuco_corners, charuco_ids, _, _ = detector.detectBoard(gray)
    if charuco_ids is None or len(charuco_ids) == 0:
        return np.zeros((0, 2), dtype=np.float32), np.zeros((0,), dtype=int)

    corners = np.asarray(charuco_corners, dtype=np.float32).reshape(-1, 1, 2)
    corners = cv2.cornerSubPix(gray, corners, (5, 5), (-1, -1), SUBPIX_CRITERIA)
    return corners.reshape(-1, 2), np.asarray(charuco_ids).reshape(-1).astype(int)


DetectFn = Callable[[np.ndarray], Tuple[np.ndarray, np.ndarray]]


class CharucoObservationSource:
    """
    Detect ChArUco corners in every image of every group.

    Image paths come from a printf-style template taking (group_id,
    camera_index + cam_start), e.g. "images/%d/%04d.png". Camera index c is
    mapped to its view slot through the database: the image named
    `name_format % c` has COLMAP image_id k and fills slot k - 1.
    """

    def __init__(
        self,
        image_path: str,
        group_num: int,
        num_views: int,
        image_ids: Mapping[str, int],
        cam_start: int = 0,
        group_start: int = 0,
        name_format: str = "%04d.png",
        workers: Optional[int] = None,
        detect_fn: DetectFn = detect_charuco_corners,
        corners_per_board: int = CORNERS_PER_BOARD,
    ) -> None:
        self.image_path = image_path
        self.group_num = group_num
        self.num_views = num_views
        self.image_ids = dict(image_ids)
        self.cam_start = cam_start
        self.group_start = group_start
        self.name_format = name_format
        self.workers = workers
        self.detect_fn = detect_fn
        self.corners_per_board = corners_per_board

    def view_slot(self, cam_idx: int) -> int:
        name = self.name_format % cam_idx
        if name not in self.image_ids:
            raise KeyError(f"Image {name!r} not found in database")
        slot = self.image_ids[name] - 1
        if not 0 <= slot < self.num_views:
            raise ValueError(
                f"Image {name!r} has image_id {slot + 1}, outside the {self.num_views} cameras"
            )
        return slot

    def _detect_group(self, group_id: int) -> List[Tuple[int, np.ndarray, np.ndarray]]:
        detections = []
        for cam_idx in range(self.num_views):
            path = self.image_path % (group_id, cam_idx + self.cam_start)
            img = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
            if img is None:
                raise FileNotFoundError(f"Could not read image: {path}")

            corners, ids = self.detect_fn(img)
            print(f"[charuco] Group {group_id} camera {cam_idx}: {len(ids)} corners")
            detections.append((self.view_slot(cam_idx), corners, ids))
        return detections

    def observations(self) -> List[TrackObservation]:
        tracks = [
            TrackObservation.empty(self.num_views)
            for _ in range(self.group_num * self.corners_per_board)
        ]
        groups = list(range(self.group_start, self.group_start + self.group_num))

        # Groups are independent; tracks are only filled once all have finished.
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            per_group = list(pool.map(self._detect_group, groups))

        for group_id, detections in zip(groups, per_group):
            base = (group_id - self.group_start) * self.corners_per_board
            for slot, corners, ids in detections:
                for (u, v), corner_id in zip(corners, ids):
                    if not 0 <= corner_id < self.corners_per_board:
                        raise ValueError(
                            f"Group {group_id}: corner id {corner_id} outside the board"
                        )
                    tracks[base + int(corner_id)].fill(slot, u, v)

        observed = sum(1 for t in tracks if t.observed_views())
        print(f"[charuco] {observed} of {len(tracks)} board corners observed")
        return tracks


__all__ = [
    "CORNERS_PER_BOARD",
    "CharucoObservationSource",
    "detect_charuco_corners",
    "make_charuco_board",
]
