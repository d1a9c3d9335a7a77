"""
Observations: reprojection residuals and their Jacobians

One Observation is one measured image location of a landmark seen from a
pose frame. For each solver iteration it computes

    r   = predicted - measured                 (2 mono, 3 stereo)
    Jc  = dr / d(tx, ty, tz, qx, qy, qz)       (camera block, quaternion
                                                columns scaled by q_scale)
    Jp  = dr / d(x, y, z)                      (point block)

and the compressed blocks the external solver accumulates into the
normal equations:

    Hpp = Jp'Jp   Hcc = Jc'Jc   Hpc = Jp'Jc   JcTE = Jc'r   Bp = Jp'r

Every row uses the same quotient rule for a perspective ratio num/pz:

    d(num/pz) = (pz * d(num) - num * d(pz)) / pz^2

Mono and stereo differ only in which rows they produce, so they are two
ResidualModel implementations selected by the stereo flag.
"""

from abc import ABC, abstractmethod
import logging
from typing import Optional, Tuple

import numpy as np

from .config import ProjectionConfig
from .landmark import Landmark
from .pose_frame import PoseFrame

logger = logging.getLogger(__name__)


class SBAError(Exception):
    """Base class for projection engine errors"""


class InvalidNumericStateError(SBAError, FloatingPointError):
    """Pose or landmark state produced non-finite camera coordinates or depth"""


class InvalidObservationError(SBAError, ValueError):
    """A placeholder observation was passed to error or Jacobian computation"""


def projection_derivative(
    num: float,
    pz: float,
    d_num: np.ndarray,
    d_pz: np.ndarray,
    ipz2f: float,
) -> np.ndarray:
    """
    Quotient rule for a perspective ratio, scaled by a focal length

    Args:
        num: numerator of the ratio (px, py or px - baseline)
        pz: camera-space depth
        d_num: derivatives of the numerator, one per parameter
        d_pz: derivatives of the depth, one per parameter
        ipz2f: focal length / pz^2

    Returns:
        Row of derivatives, same length as d_num
    """
    return (pz * d_num - num * d_pz) * ipz2f


class ResidualModel(ABC):
    """Prediction and Jacobian rows for one kind of measurement"""

    num_residuals: int = 0

    @abstractmethod
    def predict(self, frame: PoseFrame, point: np.ndarray) -> Tuple[np.ndarray, float]:
        """
        Predicted measurement of a homogeneous point

        Returns:
            (prediction, depth); prediction is undefined when depth <= 0
        """

    @abstractmethod
    def jacobian_rows(
        self,
        frame: PoseFrame,
        pc: np.ndarray,
        dpc: np.ndarray,
        ipz2: float,
    ) -> np.ndarray:
        """
        Jacobian rows for all parameters

        Args:
            frame: pose frame the point is seen from
            pc: point in normalized camera coordinates (3,)
            dpc: camera-space derivatives, one column per parameter (3, N)
            ipz2: 1 / pz^2

        Returns:
            (num_residuals, N) Jacobian
        """


class MonoResidual(ResidualModel):
    """Left-image (u, v)"""

    num_residuals = 2

    def predict(self, frame, point):
        p1 = frame.w2i @ point
        if p1[2] <= 0.0:
            return np.zeros(2), float(p1[2])
        return p1[:2] / p1[2], float(p1[2])

    def jacobian_rows(self, frame, pc, dpc, ipz2):
        px, py, pz = pc
        ipz2fx = ipz2 * frame.fx
        ipz2fy = ipz2 * frame.fy
        return np.vstack([
            projection_derivative(px, pz, dpc[0], dpc[2], ipz2fx),
            projection_derivative(py, pz, dpc[1], dpc[2], ipz2fy),
        ])


class StereoResidual(MonoResidual):
    """Left-image (u, v) plus right-image u from the baseline-shifted camera"""

    num_residuals = 3

    def predict(self, frame, point):
        left, depth = super().predict(frame, point)
        if depth <= 0.0:
            return np.zeros(3), depth

        p2 = frame.w2n @ point
        p2[0] -= frame.baseline
        p2 = frame.Kcam @ p2
        return np.append(left, p2[0] / p2[2]), depth

    def jacobian_rows(self, frame, pc, dpc, ipz2):
        px, _, pz = pc
        left = super().jacobian_rows(frame, pc, dpc, ipz2)
        ipz2fx = ipz2 * frame.fx
        right = projection_derivative(px - frame.baseline, pz, dpc[0], dpc[2], ipz2fx)
        return np.vstack([left, right])


_MONO = MonoResidual()
_STEREO = StereoResidual()


class Observation:
    """
    One measurement of a landmark from a pose frame

    Attributes:
        frame_index: stable index of the observing pose frame
        stereo: 3-residual stereo measurement (fixed at construction)
        valid: False for placeholders
        keypoint: measured (u, v, right-u); right-u is 0 for mono
        residual: last computed predicted - measured; 3 entries, only the
            first 2 are meaningful for mono
        degenerate: the point was at or behind the camera plane in the last
            evaluation
        jac_camera, jac_point: Jacobians of the current iteration
        Hpp, Hcc, Hpc, JcTE, Bp: normal-equation blocks of the current iteration
    """

    def __init__(self, frame_index: int, keypoint, stereo: bool = False):
        kp = np.asarray(keypoint, dtype=np.float64).ravel()
        if stereo and kp.size != 3:
            raise ValueError(f"Stereo keypoint needs 3 components (u, v, right-u), got {kp.size}")
        if not stereo and kp.size not in (2, 3):
            raise ValueError(f"Mono keypoint needs 2 components (u, v), got {kp.size}")
        if not stereo:
            kp = np.array([kp[0], kp[1], 0.0])

        self.frame_index = int(frame_index)
        self.stereo = bool(stereo)
        self.valid = True
        self.keypoint = kp
        self._model = _STEREO if self.stereo else _MONO
        self.degenerate = False
        self.residual = np.zeros(3)
        self._reset_blocks()

    @classmethod
    def placeholder(cls) -> "Observation":
        """Default-constructed observation not backed by a measurement"""
        obs = cls(0, (0.0, 0.0))
        obs.valid = False
        return obs

    @classmethod
    def from_disparity(cls, frame_index: int, u: float, v: float, disparity: float) -> "Observation":
        """Stereo observation from a left keypoint and its disparity"""
        return cls(frame_index, (u, v, u - disparity), stereo=True)

    @property
    def num_residuals(self) -> int:
        return self._model.num_residuals

    def _reset_blocks(self) -> None:
        n = self._model.num_residuals
        self.jac_camera = np.zeros((n, 6))
        self.jac_point = np.zeros((n, 3))
        self.Hpp = np.zeros((3, 3))
        self.Hcc = np.zeros((6, 6))
        self.Hpc = np.zeros((3, 6))
        self.JcTE = np.zeros(6)
        self.Bp = np.zeros(3)

    def _check_valid(self) -> None:
        if not self.valid:
            raise InvalidObservationError(
                f"Placeholder observation (frame {self.frame_index}) cannot be evaluated"
            )

    def compute_error(self, frame: PoseFrame, landmark: Landmark) -> float:
        """
        Reprojection error against the current frame and landmark

        Overwrites the residual. A point at or behind the camera plane gives
        a zero residual and zero cost for this iteration.

        Returns:
            Squared norm of the residual
        """
        self._check_valid()
        point = landmark.position

        prediction, depth = self._model.predict(frame, point)
        if not np.isfinite(depth) or not np.all(np.isfinite(prediction)):
            logger.error(
                f"Non-finite projection for frame {self.frame_index}: "
                f"point={point}, depth={depth}"
            )
            raise InvalidNumericStateError(
                f"Non-finite projection in frame {self.frame_index} for point {point}"
            )

        n = self._model.num_residuals
        if depth <= 0.0:
            logger.debug(f"Point behind camera in frame {self.frame_index} (z={depth:.4g})")
            self.degenerate = True
            self.residual = np.zeros(3)
            return 0.0

        self.degenerate = False
        residual = np.zeros(3)
        residual[:n] = prediction - self.keypoint[:n]
        self.residual = residual
        return float(residual[:n] @ residual[:n])

    def compute_jacobians(
        self,
        frame: PoseFrame,
        landmark: Landmark,
        config: Optional[ProjectionConfig] = None,
    ) -> None:
        """
        Jacobians and normal-equation blocks against the current state

        Uses the residual from the last compute_error call, which must have
        seen the same frame and landmark values.

        Raises:
            InvalidNumericStateError: camera coordinates or 1/pz^2 are not finite
        """
        self._check_valid()
        config = config or ProjectionConfig()
        point = landmark.position

        # world point in camera coords
        pc = frame.w2n @ point
        if not np.all(np.isfinite(pc)):
            logger.error(f"Non-finite camera coordinates in frame {self.frame_index}: {pc}")
            raise InvalidNumericStateError(
                f"Non-finite camera coordinates in frame {self.frame_index}: {pc}"
            )

        pz = pc[2]
        if pz == 0.0 or (pz < 0.0 and config.zero_degenerate_jacobians):
            logger.debug(f"Zeroing Jacobians, point behind camera in frame {self.frame_index}")
            self.degenerate = True
            self.residual = np.zeros(3)
            self._reset_blocks()
            return

        self.degenerate = bool(pz < 0.0)

        with np.errstate(divide="ignore", over="ignore"):
            ipz2 = np.float64(1.0) / (pz * pz)
        if not np.isfinite(ipz2):
            logger.error(f"Infinite Jacobian in frame {self.frame_index}: pz={pz}")
            raise InvalidNumericStateError(
                f"Depth reciprocal is not finite in frame {self.frame_index} (pz={pz})"
            )

        rot = frame.w2n[:, :3]
        # differential rotation acts on [pw - t]
        pwt = (point - frame.trans)[:3]
        dpc = np.hstack([
            -rot,                                        # camera translation
            np.column_stack([frame.dRdx @ pwt,
                             frame.dRdy @ pwt,
                             frame.dRdz @ pwt]),         # quaternion generators
            rot,                                         # point position
        ])

        jac = self._model.jacobian_rows(frame, pc, dpc, ipz2)
        jac[:, 3:6] *= config.q_scale

        if not np.all(np.isfinite(jac)):
            logger.error(f"NaN in Jacobian for frame {self.frame_index}")
            raise InvalidNumericStateError(f"Non-finite Jacobian in frame {self.frame_index}")

        jacc = jac[:, :6]
        jacp = jac[:, 6:]
        err = self.residual[:self._model.num_residuals]

        self.jac_camera = jacc
        self.jac_point = jacp
        self.Hpp = jacp.T @ jacp
        self.Hcc = jacc.T @ jacc
        self.Hpc = jacp.T @ jacc
        self.JcTE = jacc.T @ err
        self.Bp = jacp.T @ err

    def residual_norm(self) -> float:
        n = self._model.num_residuals
        return float(np.linalg.norm(self.residual[:n]))

    def residual_squared_norm(self) -> float:
        n = self._model.num_residuals
        return float(self.residual[:n] @ self.residual[:n])

    def __repr__(self) -> str:
        kind = "stereo" if self.stereo else "mono"
        return (
            f"Observation(frame={self.frame_index}, {kind}, "
            f"kp={self.keypoint[:self.num_residuals]}, valid={self.valid})"
        )
