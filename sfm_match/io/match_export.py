"""
Write assembled correspondences to a COLMAP database and to match.txt.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from sfm_match.corr.data_structures import CorrespondenceSet
from sfm_match.corr.pair_codec import image_ids_to_pair_id
from sfm_match.io.colmap_db import ColmapDatabase, array_to_blob

# Tables rebuilt from scratch on every export.
CLEARED_TABLES = ("keypoints", "matches", "two_view_geometries")


@dataclass
class ExportReport:
    """Summary of one export run."""

    keypoint_rows: int = 0
    match_rows: int = 0
    # (table, key, error message) for every row that could not be written.
    failures: List[Tuple[str, int, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def _camera_name(image_names: Mapping[int, str], camera_id: int) -> str:
    name = image_names.get(camera_id)
    if name is None:
        print(f"[export] Warning: no image name for camera {camera_id}; using its id")
        return str(camera_id)
    return name


def render_match_text(corr: CorrespondenceSet, image_names: Mapping[int, str]) -> str:
    """
    Render every camera pair as a text block.

    Blocks are separated by a blank line. Each block is a "<name_a> <name_b>"
    header followed by one "<id_a> <id_b>" line per match.
    """
    lines: List[str] = []
    for block_idx, (i, j) in enumerate(corr.pairs()):
        if block_idx > 0:
            lines.append("")
        cam_i, cam_j = corr.cameras[i], corr.cameras[j]
        lines.append(f"{_camera_name(image_names, cam_i.id)} {_camera_name(image_names, cam_j.id)}")
        for id_i, id_j in corr.matches(i, j):
            lines.append(f"{int(id_i)} {int(id_j)}")
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def write_match_text(
    txt_path: str,
    corr: CorrespondenceSet,
    image_names: Mapping[int, str],
) -> None:
    Path(txt_path).write_text(render_match_text(corr, image_names), encoding="utf-8")


def _write_row(
    db: ColmapDatabase,
    table: str,
    key: int,
    rows: int,
    data: bytes,
    report: ExportReport,
    atomic: bool,
) -> bool:
    try:
        db.upsert_row(table, key, rows, 2, data)
    except sqlite3.Error as e:
        if atomic:
            raise
        db.rollback()
        print(f"[db] Failed to write {table} row {key}: {e}")
        report.failures.append((table, key, str(e)))
        return False
    if not atomic:
        db.commit()
    return True


def _write_all(
    db: ColmapDatabase,
    corr: CorrespondenceSet,
    report: ExportReport,
    atomic: bool,
) -> None:
    for table in CLEARED_TABLES:
        try:
            db.delete_all(table)
        except sqlite3.Error as e:
            if atomic:
                raise
            db.rollback()
            print(f"[db] Failed to clear table {table}: {e}")
            report.failures.append((table, -1, str(e)))
            continue
        if not atomic:
            db.commit()

    for slot in corr.slots_by_id():
        cam = corr.cameras[slot]
        points = cam.keypoints.coordinates()
        if _write_row(db, "keypoints", cam.id, len(points),
                      array_to_blob(points, "float32"), report, atomic):
            report.keypoint_rows += 1

    for a, b in corr.pairs():
        pair_id = image_ids_to_pair_id(corr.cameras[a].id, corr.cameras[b].id)
        matches = corr.matches(a, b)
        if _write_row(db, "matches", pair_id, len(matches),
                      array_to_blob(matches, "int32"), report, atomic):
            report.match_rows += 1


def export_correspondences(
    db: ColmapDatabase,
    corr: CorrespondenceSet,
    image_names: Mapping[int, str],
    txt_path: Optional[str] = None,
    atomic: bool = False,
) -> ExportReport:
    """
    Replace the keypoints and matches stored in a COLMAP database.

    The keypoints, matches and two_view_geometries tables are emptied first.
    Then each camera gets one keypoints row (rows = number of keypoints,
    cols = 2, float32 (u, v) pairs ordered by keypoint id), and each camera
    pair (a, b) with id_a < id_b gets one matches row keyed by its pair id
    (int32 (id_in_a, id_in_b) pairs in track order).

    Args:
        db: Open COLMAP database.
        corr: Assembled correspondences.
        image_names: image_id -> image name, used for the text headers.
        txt_path: Optional path of the match.txt file to write.
        atomic: If True, run the whole export in one transaction and re-raise
                the first database error after rolling back. If False, commit
                row by row, report failed rows and keep going.

    Returns:
        ExportReport with row counts and any failed (table, key) entries.
    """
    report = ExportReport()

    if atomic:
        with db.transaction():
            _write_all(db, corr, report, atomic=True)
    else:
        _write_all(db, corr, report, atomic=False)

    print(
        f"[export] Wrote {report.keypoint_rows} keypoint rows and "
        f"{report.match_rows} match rows"
    )
    if report.failures:
        print(f"[export] {len(report.failures)} rows failed; database is partially written")

    if txt_path is not None:
        write_match_text(txt_path, corr, image_names)
        print(f"[export] Match list saved to {txt_path}")

    return report


__all__ = [
    "CLEARED_TABLES",
    "ExportReport",
    "render_match_text",
    "write_match_text",
    "export_correspondences",
]
