"""
Pose frames: camera pose, intrinsics and rotation derivatives

A PoseFrame is owned by the external solver and is read-only to the
projection engine. All of its matrices must describe the same orientation
and translation; the engine never recomputes them.
"""

import numpy as np
from typing import Optional
from dataclasses import dataclass


# Derivatives of an incremental rotation dS w.r.t. the quaternion vector part,
# taken at the identity: d(dS')/dq{x,y,z}
_DRI_DX = np.array([[0.0, 0.0, 0.0],
                    [0.0, 0.0, 2.0],
                    [0.0, -2.0, 0.0]])
_DRI_DY = np.array([[0.0, 0.0, -2.0],
                    [0.0, 0.0, 0.0],
                    [2.0, 0.0, 0.0]])
_DRI_DZ = np.array([[0.0, 2.0, 0.0],
                    [-2.0, 0.0, 0.0],
                    [0.0, 0.0, 0.0]])


@dataclass
class CameraParams:
    """Pinhole intrinsics plus stereo baseline (tx = 0 for monocular)"""

    fx: float
    fy: float
    cx: float
    cy: float
    tx: float = 0.0

    def __post_init__(self):
        if self.fx <= 0 or self.fy <= 0:
            raise ValueError(f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}")

    def to_matrix(self) -> np.ndarray:
        """3x3 intrinsic matrix"""
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0],
        ])


def _as_matrix(value, shape, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64)
    if arr.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
    return arr


@dataclass
class PoseFrame:
    """
    Camera pose at the current solver iteration

    Attributes:
        w2n: 3x4 world-to-normalized-camera transform [R' | -R't]
        w2i: 3x4 world-to-image transform (Kcam @ w2n)
        Kcam: 3x3 intrinsic matrix
        baseline: stereo baseline, 0 for monocular frames
        trans: camera centre in world coordinates, homogeneous (4,)
        dRdx, dRdy, dRdz: derivatives of R' w.r.t. the quaternion vector part
        fixed: frame is held constant by the solver
    """

    w2n: np.ndarray
    w2i: np.ndarray
    Kcam: np.ndarray
    baseline: float
    trans: np.ndarray
    dRdx: np.ndarray
    dRdy: np.ndarray
    dRdz: np.ndarray
    fixed: bool = False
    qvec: Optional[np.ndarray] = None  # (w, x, y, z), set by from_pose

    def __post_init__(self):
        self.w2n = _as_matrix(self.w2n, (3, 4), "w2n")
        self.w2i = _as_matrix(self.w2i, (3, 4), "w2i")
        self.Kcam = _as_matrix(self.Kcam, (3, 3), "Kcam")
        self.dRdx = _as_matrix(self.dRdx, (3, 3), "dRdx")
        self.dRdy = _as_matrix(self.dRdy, (3, 3), "dRdy")
        self.dRdz = _as_matrix(self.dRdz, (3, 3), "dRdz")
        self.baseline = float(self.baseline)

        trans = np.asarray(self.trans, dtype=np.float64).ravel()
        if trans.size == 3:
            trans = np.append(trans, 1.0)
        self.trans = _as_matrix(trans, (4,), "trans")

    @property
    def fx(self) -> float:
        return float(self.Kcam[0, 0])

    @property
    def fy(self) -> float:
        return float(self.Kcam[1, 1])

    @property
    def is_stereo(self) -> bool:
        return self.baseline != 0.0

    @classmethod
    def from_pose(
        cls,
        qvec: np.ndarray,
        trans: np.ndarray,
        cam_params: CameraParams,
        fixed: bool = False,
    ) -> "PoseFrame":
        """
        Build a consistent frame from an orientation and camera centre

        Args:
            qvec: camera-to-world rotation as quaternion (w, x, y, z); normalized here
            trans: camera centre in world coordinates (3,) or homogeneous (4,)
            cam_params: intrinsics and stereo baseline
            fixed: frame is held constant by the solver

        Returns:
            PoseFrame with transforms and local rotation derivatives
        """
        qvec = np.asarray(qvec, dtype=np.float64).ravel()
        if qvec.size != 4:
            raise ValueError(f"qvec must have 4 components (w, x, y, z), got {qvec.size}")
        norm = np.linalg.norm(qvec)
        if norm == 0.0 or not np.isfinite(norm):
            raise ValueError(f"qvec must be a finite non-zero quaternion, got {qvec}")
        qvec = qvec / norm

        t = np.asarray(trans, dtype=np.float64).ravel()[:3]
        if t.size != 3:
            raise ValueError(f"trans must have at least 3 components, got {t.size}")

        R = _quat_to_rotation_matrix(qvec)
        Rt = R.T

        w2n = np.zeros((3, 4))
        w2n[:, :3] = Rt
        w2n[:, 3] = -Rt @ t

        Kcam = cam_params.to_matrix()

        # Local (differential) rotation: w2n' = dS' * R'
        return cls(
            w2n=w2n,
            w2i=Kcam @ w2n,
            Kcam=Kcam,
            baseline=cam_params.tx,
            trans=t,
            dRdx=_DRI_DX @ Rt,
            dRdy=_DRI_DY @ Rt,
            dRdz=_DRI_DZ @ Rt,
            fixed=fixed,
            qvec=qvec,
        )


def _quat_to_rotation_matrix(qvec: np.ndarray) -> np.ndarray:
    """Convert quaternion (w, x, y, z) to 3x3 rotation matrix"""
    qw, qx, qy, qz = qvec
    R = np.array([
        [1 - 2*qy**2 - 2*qz**2,     2*qx*qy - 2*qz*qw,     2*qx*qz + 2*qy*qw],
        [    2*qx*qy + 2*qz*qw, 1 - 2*qx**2 - 2*qz**2,     2*qy*qz - 2*qx*qw],
        [    2*qx*qz - 2*qy*qw,     2*qy*qz + 2*qx*qw, 1 - 2*qx**2 - 2*qy**2]
    ])
    return R
