"""
Landmarks: homogeneous 3D point estimates
"""

import numpy as np


class Landmark:
    """
    3D point estimate in homogeneous coordinates (x, y, z, w)

    The last component is a scale/weight, 1 for finite points. Only the
    external solver moves a landmark, between iterations.
    """

    def __init__(self, position=(0.0, 0.0, 0.0, 1.0)):
        self.position = position

    @property
    def position(self) -> np.ndarray:
        return self._position

    @position.setter
    def position(self, value) -> None:
        arr = np.asarray(value, dtype=np.float64).ravel()
        if arr.size == 3:
            arr = np.append(arr, 1.0)
        if arr.size != 4:
            raise ValueError(f"Landmark needs 3 or 4 components, got {arr.size}")
        self._position = arr

    @property
    def xyz(self) -> np.ndarray:
        return self._position[:3]

    def update(self, delta) -> None:
        """Apply a solver step to the Euclidean part"""
        delta = np.asarray(delta, dtype=np.float64).ravel()
        if delta.size != 3:
            raise ValueError(f"Landmark update needs 3 components, got {delta.size}")
        self._position = self._position.copy()
        self._position[:3] += delta

    def __repr__(self) -> str:
        x, y, z, w = self._position
        return f"Landmark({x:.4g}, {y:.4g}, {z:.4g}, {w:.4g})"
