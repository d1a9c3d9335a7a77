"""
Tracks: all observations of one landmark
"""

from typing import Iterator, List, Optional

from .landmark import Landmark
from .observation import Observation


class Track:
    """
    A landmark and the observations that see it

    Observations are appended as new sightings arrive and are never removed
    one by one; dropping a landmark drops its whole track.
    """

    def __init__(self, point: Optional[Landmark] = None):
        self.point = point if point is not None else Landmark()
        self.projections: List[Observation] = []

    def add(self, observation: Observation) -> Observation:
        """Append an observation of this track's landmark"""
        self.projections.append(observation)
        return observation

    def frame_indices(self) -> List[int]:
        """Indices of the frames observing this landmark"""
        return [obs.frame_index for obs in self.projections]

    def __len__(self) -> int:
        return len(self.projections)

    def __iter__(self) -> Iterator[Observation]:
        return iter(self.projections)

    def __repr__(self) -> str:
        return f"Track({self.point!r}, {len(self.projections)} projections)"
