"""
Command-line interface for exporting multi-view correspondences to COLMAP.
"""

from __future__ import annotations

import argparse
import sqlite3
import time
from functools import partial
from pathlib import Path
from typing import List, Optional

from sfm_match.corr.assembler import assemble_correspondences
from sfm_match.corr.keypoints import ExactCoordinateIndex, ToleranceCoordinateIndex
from sfm_match.detect.charuco_detect import (
    CharucoObservationSource,
    detect_charuco_corners,
    make_charuco_board,
)
from sfm_match.detect.source import ObservationSource
from sfm_match.detect.synthetic import SyntheticConfig, SyntheticObservationSource
from sfm_match.io.colmap_db import ColmapDatabase
from sfm_match.io.match_export import export_correspondences
from sfm_match.io.observation_log import write_observation_log
from sfm_match.viz.plotly_viz import plot_pair_match_counts


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Build keypoints and matches from multi-view point observations "
            "and write them into a COLMAP database"
        )
    )
    parser.add_argument(
        "--project-path",
        type=str,
        required=True,
        help="COLMAP project directory containing database.db; outputs are written here",
    )
    parser.add_argument(
        "--cam-num",
        type=int,
        default=None,
        help="Number of cameras (default: number of images in the database)",
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help=(
            "Merge keypoints closer than this many pixels. "
            "Default: only bit-identical coordinates are merged"
        ),
    )
    parser.add_argument(
        "--atomic",
        action="store_true",
        help="Write the database in a single transaction (all or nothing)",
    )
    parser.add_argument(
        "--visualize",
        action="store_true",
        help="Generate an HTML heat map of pairwise match counts",
    )

    aruco = parser.add_argument_group("ChArUco detection")
    aruco.add_argument(
        "--aruco",
        action="store_true",
        help="Detect ChArUco corners in images instead of generating random points",
    )
    aruco.add_argument(
        "--image-path",
        type=str,
        default=None,
        help="Image path template taking (group, camera), e.g. images/%%d/%%04d.png",
    )
    aruco.add_argument("--group-num", type=int, default=1, help="Number of image groups (default: 1)")
    aruco.add_argument("--cam-start", type=int, default=0, help="Camera index start (default: 0)")
    aruco.add_argument("--group-start", type=int, default=0, help="Group index start (default: 0)")
    aruco.add_argument(
        "--name-format",
        type=str,
        default="%04d.png",
        help="Database image name of camera index c (default: %%04d.png)",
    )
    aruco.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads for detection (default: Python's ThreadPoolExecutor default)",
    )
    aruco.add_argument(
        "--modern-board",
        action="store_true",
        help="Board printed with the OpenCV >= 4.6 layout (default: legacy layout)",
    )

    synth = parser.add_argument_group("Synthetic points")
    synth.add_argument(
        "--xml-path",
        type=str,
        default="./xml_gt/%d.xml",
        help="Ground-truth projection matrix files, one per camera (default: ./xml_gt/%%d.xml)",
    )
    synth.add_argument("--max-points", type=int, default=1000, help="Number of random 3D points")
    synth.add_argument("--pixel-error", type=float, default=1.0, help="2D detection pixel error")
    synth.add_argument(
        "--track-length",
        type=int,
        nargs=2,
        metavar=("MIN", "MAX"),
        default=[2, 4],
        help="Track length range for --track-exp (default: 2 4)",
    )
    synth.add_argument(
        "--axis-range",
        type=int,
        nargs=6,
        metavar=("X0", "X1", "Y0", "Y1", "Z0", "Z1"),
        default=[-2000, 2000, -2000, 2000, 0, 2000],
        help="3D point sampling box",
    )
    synth.add_argument(
        "--has-circle",
        action="store_true",
        help="Place most points on a ring outside the camera rig",
    )
    synth.add_argument(
        "--track-exp",
        action="store_true",
        help="Force every track length into the --track-length range",
    )
    synth.add_argument("--seed", type=int, default=None, help="Random seed")
    return parser


def make_source(args: argparse.Namespace, db: ColmapDatabase, cam_num: int) -> ObservationSource:
    if args.aruco:
        if not args.image_path:
            raise ValueError("--image-path is required with --aruco")
        return CharucoObservationSource(
            args.image_path,
            group_num=args.group_num,
            num_views=cam_num,
            image_ids=db.read_image_ids(),
            cam_start=args.cam_start,
            group_start=args.group_start,
            name_format=args.name_format,
            workers=args.workers,
            detect_fn=partial(
                detect_charuco_corners,
                board=make_charuco_board(legacy_pattern=not args.modern_board),
            ),
        )

    r = args.axis_range
    config = SyntheticConfig(
        max_points=args.max_points,
        axis_range=((r[0], r[1]), (r[2], r[3]), (r[4], r[5])),
        pixel_error=args.pixel_error,
        track_range=tuple(args.track_length),
        is_track_exp=args.track_exp,
        has_circle=args.has_circle,
        seed=args.seed,
    )
    return SyntheticObservationSource.from_xml(args.xml_path, cam_num, config)


def run(args: argparse.Namespace) -> int:
    start_time = time.perf_counter()
    project = Path(args.project_path)
    database_path = project / "database.db"
    if not database_path.exists():
        raise FileNotFoundError(f"COLMAP database not found: {database_path}")

    db = ColmapDatabase.connect(str(database_path))
    try:
        # Step 1: image id <-> name mapping
        print(f"[export] 1. Reading image ids from {database_path}")
        image_names = db.read_image_names()
        for image_id, name in sorted(image_names.items()):
            print(f"[export]    {name} -> image_id {image_id}")
        cam_num = args.cam_num if args.cam_num is not None else len(image_names)
        if cam_num < 2:
            raise ValueError(f"Need at least 2 cameras, got {cam_num}")

        # Step 2: track observations
        if args.aruco:
            print("[export] 2. Collecting observations (ChArUco)")
        else:
            print("[export] 2. Collecting observations (random points)")
        source = make_source(args, db, cam_num)
        tracks = source.observations()
        write_observation_log(str(project / "log.txt"), tracks)

        # Step 3: keypoints + matches
        print("[export] 3. Assembling correspondences")
        if args.tolerance is not None:
            index_factory = partial(ToleranceCoordinateIndex, args.tolerance)
        else:
            index_factory = ExactCoordinateIndex
        corr = assemble_correspondences(tracks, cam_num, index_factory=index_factory)

        # Step 4: database + match.txt
        print("[export] 4. Writing to database")
        report = export_correspondences(
            db,
            corr,
            image_names,
            txt_path=str(project / "match.txt"),
            atomic=args.atomic,
        )

        if args.visualize:
            fig = plot_pair_match_counts(corr, image_names)
            viz_path = project / "match_graph.html"
            fig.write_html(str(viz_path))
            print(f"[export] Visualization saved to {viz_path}")
    finally:
        db.close()

    print(f"[export] Finished in {time.perf_counter() - start_time:.3f} s")
    return 0 if report.ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Usage:
        sfm-match-export --project-path project/ --aruco \\
                         --image-path images/%d/%04d.png --group-num 12

        sfm-match-export --project-path project/ --xml-path xml_gt/%d.xml \\
                         --max-points 2000 --pixel-error 1 --seed 0
    """
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except (ValueError, KeyError, FileNotFoundError, RuntimeError, sqlite3.Error) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
