"""
Visualization of camera connectivity using Plotly.
"""

from __future__ import annotations

from typing import Mapping

import numpy as np
import plotly.graph_objs as go

from sfm_match.corr.data_structures import CorrespondenceSet


def match_count_matrix(corr: CorrespondenceSet) -> np.ndarray:
    """
    Symmetric (N, N) matrix of match counts between camera slots.

    The diagonal holds each camera's keypoint count.
    """
    n = corr.num_cameras
    counts = np.zeros((n, n), dtype=int)
    for slot, cam in enumerate(corr.cameras):
        counts[slot, slot] = len(cam.keypoints)
    for (i, j), matches in corr.pair_matches.items():
        counts[i, j] = counts[j, i] = len(matches)
    return counts


def plot_pair_match_counts(
    corr: CorrespondenceSet,
    image_names: Mapping[int, str],
) -> go.Figure:
    """
    Create a heat map of how many matches each camera pair shares.

    Args:
        corr: Assembled correspondences.
        image_names: image_id -> image name, used as axis labels.

    Returns:
        Plotly Figure with one heat map cell per camera pair.
    """
    counts = match_count_matrix(corr)
    labels = [image_names.get(cam.id, str(cam.id)) for cam in corr.cameras]

    fig = go.Figure()
    fig.add_trace(
        go.Heatmap(
            z=counts,
            x=labels,
            y=labels,
            colorscale="Viridis",
            colorbar=dict(title="Matches"),
            hovertemplate="%{y} / %{x}: %{z}<extra></extra>",
        )
    )

    fig.update_layout(
        title=f"Pairwise matches ({corr.num_tracks} tracks, {corr.num_cameras} cameras)",
        xaxis=dict(title="Camera", type="category"),
        yaxis=dict(title="Camera", type="category", autorange="reversed"),
        width=800,
        height=800,
    )

    return fig


__all__ = ["match_count_matrix", "plot_pair_match_counts"]
