"""
Projection system: frames, tracks and batch evaluation

Bookkeeping layer the external solver drives each iteration. It holds the
pose frames and tracks, evaluates every observation against one frozen
snapshot of frame and landmark state, and reports cost diagnostics. It
never moves frames or landmarks; the solver does that between iterations.
"""

import numpy as np
import logging
import time
from typing import List, Optional, Tuple, Union
from concurrent.futures import ThreadPoolExecutor
from scipy.sparse import lil_matrix
from tqdm import tqdm

from .config import ProjectionConfig
from .landmark import Landmark
from .observation import Observation
from .pose_frame import CameraParams, PoseFrame
from .track import Track

logger = logging.getLogger(__name__)


class ProjectionSystem:
    """
    Frames and tracks of a bundle adjustment problem

    Evaluation is data-parallel over tracks: each track's observations only
    write their own residual and Jacobian state, so tracks run on a thread
    pool. Batch calls return only after every observation has been evaluated.
    """

    def __init__(self, config: Optional[ProjectionConfig] = None):
        """
        Args:
            config: ProjectionConfig or None (uses defaults)
        """
        self.config = config or ProjectionConfig()

        # Configure logging for the whole package
        logging.getLogger("sba").setLevel(getattr(logging, self.config.log_level))

        self.frames: List[PoseFrame] = []
        self.tracks: List[Track] = []

    def add_frame(self, frame: PoseFrame) -> int:
        """Add a pose frame, returning its index"""
        self.frames.append(frame)
        return len(self.frames) - 1

    def add_node(
        self,
        qvec: np.ndarray,
        trans: np.ndarray,
        cam_params: CameraParams,
        fixed: bool = False,
    ) -> int:
        """Add a pose frame built from a camera centre and orientation"""
        return self.add_frame(PoseFrame.from_pose(qvec, trans, cam_params, fixed=fixed))

    def add_point(self, point: Union[Landmark, np.ndarray, Tuple[float, ...]]) -> int:
        """Add a landmark with an empty track, returning the point index"""
        if not isinstance(point, Landmark):
            point = Landmark(point)
        self.tracks.append(Track(point))
        return len(self.tracks) - 1

    def add_projection(
        self,
        frame_index: int,
        point_index: int,
        keypoint: np.ndarray,
        stereo: bool = False,
    ) -> bool:
        """
        Add an observation of a point from a frame

        Returns:
            False (and nothing added) if either index is out of range
        """
        if not (0 <= point_index < len(self.tracks) and 0 <= frame_index < len(self.frames)):
            logger.warning(
                f"Failed to add projection: C: {frame_index}, P: {point_index}, "
                f"Csize: {len(self.frames)}, Psize: {len(self.tracks)}"
            )
            return False

        self.tracks[point_index].add(Observation(frame_index, keypoint, stereo=stereo))
        return True

    def _valid_observations(self, track: Track) -> List[Observation]:
        return [obs for obs in track.projections if obs.valid]

    def _track_error(self, track: Track) -> float:
        return sum(
            obs.compute_error(self.frames[obs.frame_index], track.point)
            for obs in self._valid_observations(track)
        )

    def _track_jacobians(self, track: Track) -> None:
        for obs in self._valid_observations(track):
            obs.compute_jacobians(self.frames[obs.frame_index], track.point, self.config)

    def _run_over_tracks(self, fn, desc: str) -> list:
        """Apply fn to every track on the thread pool; results in track order"""
        results = [None] * len(self.tracks)
        if not self.tracks:
            return results

        with ThreadPoolExecutor(max_workers=self.config.resolved_workers()) as executor:
            futures = [executor.submit(fn, track) for track in self.tracks]
            for i, future in enumerate(tqdm(futures, total=len(futures), desc=desc,
                                            disable=not self.config.show_progress)):
                results[i] = future.result()
        return results

    def compute_errors(self) -> float:
        """
        Residuals of all valid observations against the current state

        Returns:
            Total cost (sum of squared residual norms)
        """
        start_time = time.time()
        costs = self._run_over_tracks(self._track_error, "Computing errors")
        total = float(sum(costs))
        logger.debug(
            f"Computed errors for {self.count_projections()} projections "
            f"in {time.time() - start_time:.3f}s, cost={total:.6f}"
        )
        return total

    def compute_jacobians(self) -> None:
        """Jacobians and normal-equation blocks of all valid observations"""
        start_time = time.time()
        self._run_over_tracks(self._track_jacobians, "Computing Jacobians")
        logger.debug(
            f"Computed Jacobians for {self.count_projections()} projections "
            f"in {time.time() - start_time:.3f}s"
        )

    def calc_cost(self) -> float:
        """Total cost, re-evaluating every residual"""
        return self.compute_errors()

    def calc_avg_cost(self) -> float:
        """Mean squared residual norm per projection"""
        n = self.count_projections()
        if n == 0:
            return 0.0
        return self.calc_cost() / n

    def calc_rms_cost(self) -> float:
        """Root mean squared residual norm per projection"""
        return float(np.sqrt(self.calc_avg_cost()))

    def count_projections(self) -> int:
        """Number of valid observations"""
        return sum(len(self._valid_observations(track)) for track in self.tracks)

    def num_degenerate(self) -> int:
        """Observations flagged as behind the camera by the last evaluation"""
        return sum(
            1 for track in self.tracks for obs in self._valid_observations(track)
            if obs.degenerate
        )

    def residual_vector(self) -> np.ndarray:
        """Stacked residual components of all valid observations, in track order"""
        parts = [
            obs.residual[:obs.num_residuals]
            for track in self.tracks
            for obs in self._valid_observations(track)
        ]
        if not parts:
            return np.zeros(0)
        return np.concatenate(parts)

    def jacobian_sparsity(self) -> lil_matrix:
        """
        Sparsity pattern of the stacked Jacobian

        Rows follow residual_vector(). Columns hold 6 pose parameters per
        frame, followed by 3 position parameters per point.
        """
        num_rows = sum(
            obs.num_residuals
            for track in self.tracks
            for obs in self._valid_observations(track)
        )
        point_base_offset = 6 * len(self.frames)
        num_params = point_base_offset + 3 * len(self.tracks)

        sparsity = lil_matrix((num_rows, num_params), dtype=int)

        row = 0
        for point_idx, track in enumerate(self.tracks):
            pt_offset = point_base_offset + 3 * point_idx
            for obs in self._valid_observations(track):
                cam_offset = 6 * obs.frame_index
                rows = slice(row, row + obs.num_residuals)
                sparsity[rows, cam_offset:cam_offset + 6] = 1
                sparsity[rows, pt_offset:pt_offset + 3] = 1
                row += obs.num_residuals

        return sparsity

    def summary(self) -> dict:
        """Log and return problem size and current RMS cost"""
        stats = {
            "frames": len(self.frames),
            "points": len(self.tracks),
            "projections": self.count_projections(),
            "rms_cost": self.calc_rms_cost(),
            "degenerate": self.num_degenerate(),
        }
        logger.info(
            f"SBA Nodes: {stats['frames']}, Points: {stats['points']}, "
            f"Projections: {stats['projections']}, RMS cost: {stats['rms_cost']:.6f}, "
            f"Behind camera: {stats['degenerate']}"
        )
        return stats
