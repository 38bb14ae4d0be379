"""
Plain-text dump of raw track observations, one line per track.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from sfm_match.corr.data_structures import TrackObservation


def format_track(track: TrackObservation) -> str:
    return "".join(f"({u:g}, {v:g}) | " for u, v in track.pixel_points)


def write_observation_log(output_path: str, tracks: Iterable[TrackObservation]) -> None:
    """
    Write every track as "(u, v) | (u, v) | ..." with one entry per view.

    Unobserved views show up as (-1, -1).
    """
    with open(Path(output_path), "w", encoding="utf-8") as f:
        for track in tracks:
            f.write(format_track(track) + "\n")


__all__ = ["format_track", "write_observation_log"]
