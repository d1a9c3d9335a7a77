"""
Unit tests for pose frames, landmarks and tracks
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sba.core.pose_frame import CameraParams, PoseFrame
from sba.core.landmark import Landmark
from sba.core.observation import Observation
from sba.core.track import Track


def quat_mul(q1, q2):
    """Hamilton product of (w, x, y, z) quaternions"""
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return np.array([
        w1*w2 - x1*x2 - y1*y2 - z1*z2,
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2,
    ])


class TestCameraParams:
    """Test intrinsics container"""

    def test_to_matrix(self):
        K = CameraParams(500.0, 510.0, 320.0, 240.0).to_matrix()
        np.testing.assert_array_equal(K, [[500.0, 0.0, 320.0], [0.0, 510.0, 240.0], [0.0, 0.0, 1.0]])

    def test_non_positive_focal_length(self):
        with pytest.raises(ValueError):
            CameraParams(0.0, 500.0, 320.0, 240.0)


class TestPoseFrame:
    """Test frame construction from a pose"""

    def test_identity_pose(self):
        cam = CameraParams(100.0, 100.0, 0.0, 0.0)
        frame = PoseFrame.from_pose([1.0, 0.0, 0.0, 0.0], [0.0, 0.0, 0.0], cam)

        np.testing.assert_allclose(frame.w2n, np.hstack([np.eye(3), np.zeros((3, 1))]))
        np.testing.assert_allclose(frame.w2i, cam.to_matrix() @ frame.w2n)
        np.testing.assert_array_equal(frame.trans, [0.0, 0.0, 0.0, 1.0])
        assert frame.baseline == 0.0
        assert not frame.is_stereo
        assert frame.fx == 100.0 and frame.fy == 100.0

    def test_camera_centre_maps_to_origin(self):
        qvec = np.array([0.9, -0.3, 0.2, 0.1])
        centre = np.array([1.0, -2.0, 0.5])
        frame = PoseFrame.from_pose(qvec, centre, CameraParams(400.0, 400.0, 0.0, 0.0, tx=0.07))

        np.testing.assert_allclose(frame.w2n @ np.append(centre, 1.0), np.zeros(3), atol=1e-12)
        rot = frame.w2n[:, :3]
        np.testing.assert_allclose(rot @ rot.T, np.eye(3), atol=1e-12)
        assert np.linalg.norm(frame.qvec) == pytest.approx(1.0)
        assert frame.is_stereo
        assert frame.baseline == pytest.approx(0.07)

    def test_rotation_derivatives_match_local_perturbation(self):
        qvec = np.array([0.9, -0.3, 0.2, 0.1])
        qvec = qvec / np.linalg.norm(qvec)
        cam = CameraParams(400.0, 400.0, 0.0, 0.0)
        frame = PoseFrame.from_pose(qvec, np.zeros(3), cam)
        eps = 1e-6

        for j, analytic in enumerate((frame.dRdx, frame.dRdy, frame.dRdz)):
            dq = np.array([1.0, 0.0, 0.0, 0.0])
            dq[j + 1] = eps
            plus = PoseFrame.from_pose(quat_mul(qvec, dq), np.zeros(3), cam).w2n[:, :3]
            dq[j + 1] = -eps
            minus = PoseFrame.from_pose(quat_mul(qvec, dq), np.zeros(3), cam).w2n[:, :3]
            np.testing.assert_allclose(analytic, (plus - minus) / (2 * eps), atol=1e-6)

    def test_direct_construction_validates_shapes(self):
        with pytest.raises(ValueError):
            PoseFrame(
                w2n=np.zeros((3, 3)),
                w2i=np.zeros((3, 4)),
                Kcam=np.eye(3),
                baseline=0.0,
                trans=np.zeros(3),
                dRdx=np.zeros((3, 3)),
                dRdy=np.zeros((3, 3)),
                dRdz=np.zeros((3, 3)),
            )

    def test_bad_quaternion(self):
        cam = CameraParams(100.0, 100.0, 0.0, 0.0)
        with pytest.raises(ValueError):
            PoseFrame.from_pose([0.0, 0.0, 0.0, 0.0], np.zeros(3), cam)
        with pytest.raises(ValueError):
            PoseFrame.from_pose([1.0, 0.0, 0.0], np.zeros(3), cam)


class TestLandmark:
    """Test homogeneous point container"""

    def test_three_components_get_unit_weight(self):
        landmark = Landmark((1.0, 2.0, 3.0))
        np.testing.assert_array_equal(landmark.position, [1.0, 2.0, 3.0, 1.0])
        np.testing.assert_array_equal(landmark.xyz, [1.0, 2.0, 3.0])

    def test_homogeneous_weight_kept(self):
        landmark = Landmark((1.0, 2.0, 3.0, 0.5))
        assert landmark.position[3] == 0.5

    def test_wrong_size(self):
        with pytest.raises(ValueError):
            Landmark((1.0, 2.0))

    def test_update(self):
        landmark = Landmark((1.0, 2.0, 3.0))
        landmark.update((0.5, -1.0, 0.0))
        np.testing.assert_array_equal(landmark.position, [1.5, 1.0, 3.0, 1.0])


class TestTrack:
    """Test observation aggregation per landmark"""

    def test_add_observations(self):
        track = Track(Landmark((0.0, 0.0, 5.0)))
        assert len(track) == 0

        track.add(Observation(0, (1.0, 2.0)))
        track.add(Observation(2, (3.0, 4.0, 1.0), stereo=True))

        assert len(track) == 2
        assert track.frame_indices() == [0, 2]
        assert [obs.stereo for obs in track] == [False, True]

    def test_default_landmark(self):
        track = Track()
        np.testing.assert_array_equal(track.point.position, [0.0, 0.0, 0.0, 1.0])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
