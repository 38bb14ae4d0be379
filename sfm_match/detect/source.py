"""
Interface shared by everything that produces track observations.
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from sfm_match.corr.data_structures import TrackObservation


@runtime_checkable
class ObservationSource(Protocol):
    """
    Producer of multi-view track observations.

    observations() returns the complete, finished list of tracks for one run.
    Calling it again produces the list again (re-detecting or re-sampling).
    """

    num_views: int

    def observations(self) -> List[TrackObservation]:
        ...


__all__ = ["ObservationSource"]
