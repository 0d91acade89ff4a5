"""
Unit tests for epipolar matching and mutual consistency
"""

import pytest
import numpy as np
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from cameras.transform import PixelTransform
from common.errors import ConfigurationError
from common.types import InterestPoint
from ip_match.epipolar import EpipolarLinePointMatcher, mutual_consistency
from tests.synthetic import DATUM, bounce, nadir_camera


def _unit(v):
    v = np.asarray(v, dtype=np.float32)
    return v / np.linalg.norm(v)


def _ip(xy, desc):
    return InterestPoint(x=float(xy[0]), y=float(xy[1]), descriptor=_unit(desc))


@pytest.fixture
def rig():
    cam1 = nadir_camera()
    cam2 = nadir_camera(x=40.0)
    return cam1, cam2


class TestEpipolarLine:
    """Test cases for epipolar line geometry"""

    def test_true_match_on_line(self, rig):
        """The projection of any point on the pixel ray lies on the line"""
        cam1, cam2 = rig
        p = np.array([123.0, 321.0])
        line = EpipolarLinePointMatcher.epipolar_line(p, DATUM, cam1, cam2)
        assert line is not None
        assert line[0] ** 2 + line[1] ** 2 == pytest.approx(1.0)

        q = bounce(p, cam1, cam2)[0]
        assert EpipolarLinePointMatcher.distance_point_line(line, q) < 1e-6

        # a point 300 m above the ground on the same ray
        above = DATUM.intersect_ray(cam1.camera_center(), cam1.pixel_to_vector(p), alt_m=300.0)
        q_above = cam2.point_to_pixel(above)
        assert EpipolarLinePointMatcher.distance_point_line(line, q_above) < 1e-6

    def test_line_follows_baseline(self, rig):
        """With an along-x baseline the lines are horizontal"""
        cam1, cam2 = rig
        line = EpipolarLinePointMatcher.epipolar_line(np.array([200.0, 100.0]), DATUM, cam1, cam2)
        assert abs(line[0]) < 1e-6

    def test_distance_point_line(self):
        """Perpendicular distance of points to a line"""
        line = np.array([0.0, 2.0, -10.0])  # y = 5
        d = EpipolarLinePointMatcher.distance_point_line(line, np.array([[3.0, 5.0], [0.0, 8.0], [1.0, 1.0]]))
        np.testing.assert_allclose(d, [0.0, 3.0, 4.0])

    def test_ray_missing_datum(self):
        """A pixel that sees the sky has no line"""
        cam_up = nadir_camera()
        cam_sky = type(cam_up)(center=cam_up.center, R=np.diag([1.0, -1.0, -1.0]) @ cam_up.R,
                               fx=cam_up.fx, fy=cam_up.fy, cx=cam_up.cx, cy=cam_up.cy)
        assert EpipolarLinePointMatcher.epipolar_line(np.array([256.0, 256.0]), DATUM, cam_sky, cam_up) is None


class TestEpipolarMatcher:
    """Test cases for EpipolarLinePointMatcher.match"""

    def test_candidate_off_line_is_excluded(self, rig):
        """Identical descriptors off the epipolar band never compete"""
        cam1, cam2 = rig
        p = np.array([200.0, 150.0])
        q = bounce(p, cam1, cam2)[0]
        d = [1.0, 0.0, 0.0, 0.0]
        ip1 = [_ip(p, d)]
        ip2 = [_ip(q + [0.0, 20.0], d), _ip(q, [1.0, 0.05, 0.0, 0.0])]

        matcher = EpipolarLinePointMatcher(0.5, 5.0, DATUM)
        assert matcher.match(ip1, ip2, cam1, cam2) == [1]

    def test_ambiguous_candidates_rejected(self, rig):
        """Two near-equal descriptors on the line fail the ratio test"""
        cam1, cam2 = rig
        p = np.array([200.0, 150.0])
        q = bounce(p, cam1, cam2)[0]
        ip1 = [_ip(p, [1.0, 0.0, 0.0, 0.0])]
        ip2 = [_ip(q, [1.0, 0.1, 0.0, 0.0]), _ip(q + [30.0, 0.0], [1.0, 0.0, 0.1, 0.0])]

        matcher = EpipolarLinePointMatcher(0.5, 5.0, DATUM)
        assert matcher.match(ip1, ip2, cam1, cam2) == [None]

    def test_distinct_descriptor_wins(self, rig):
        """A clearly closer descriptor on the line is accepted"""
        cam1, cam2 = rig
        p = np.array([300.0, 400.0])
        q = bounce(p, cam1, cam2)[0]
        ip1 = [_ip(p, [1.0, 0.0, 0.0, 0.0])]
        ip2 = [_ip(q + [30.0, 0.0], [0.0, 1.0, 0.0, 0.0]), _ip(q, [1.0, 0.02, 0.0, 0.0])]

        matcher = EpipolarLinePointMatcher(0.5, 5.0, DATUM)
        assert matcher(ip1, ip2, cam1, cam2) == [1]

    def test_transforms_are_honoured(self, rig):
        """Points given in processing frames still match"""
        cam1, cam2 = rig
        tx1 = PixelTransform.scaling(0.5)
        tx2 = PixelTransform.translation(-10.0, 6.0)
        p = np.array([220.0, 180.0])
        q = bounce(p, cam1, cam2)[0]
        d = [0.0, 0.0, 1.0, 0.0]
        ip1 = [_ip(tx1.forward(p), d)]
        ip2 = [_ip(tx2.forward(q), d), _ip(tx2.forward(q) + [0.0, 25.0], d)]

        matcher = EpipolarLinePointMatcher(0.5, 3.0, DATUM)
        assert matcher.match(ip1, ip2, cam1, cam2, tx1, tx2) == [0]

    def test_empty_inputs(self, rig):
        """Empty lists give all-None output"""
        cam1, cam2 = rig
        matcher = EpipolarLinePointMatcher(0.5, 5.0, DATUM)
        assert matcher.match([], [_ip([1, 1], [1, 0])], cam1, cam2) == []
        assert matcher.match([_ip([1, 1], [1, 0])], [], cam1, cam2) == [None]

    def test_progress_when_nothing_matches(self, rig):
        """Progress is reported every 256 points even when no candidate survives"""
        cam1, cam2 = rig
        rng = np.random.default_rng(0)
        ip1 = [_ip(xy, [1, 0]) for xy in rng.uniform(50.0, 450.0, size=(600, 2))]
        ip2 = [_ip([256.0, -5000.0], [1, 0])]
        seen = []
        out = EpipolarLinePointMatcher(0.5, 4.0, DATUM).match(ip1, ip2, cam1, cam2, progress=seen.append)
        assert out == [None] * 600
        assert seen == pytest.approx([256 / 600, 512 / 600, 1.0])

    def test_invalid_thresholds(self):
        """Non-positive thresholds are configuration errors"""
        with pytest.raises(ConfigurationError):
            EpipolarLinePointMatcher(0.0, 5.0, DATUM)
        with pytest.raises(ConfigurationError):
            EpipolarLinePointMatcher(0.5, 0.0, DATUM)
        with pytest.raises(ConfigurationError):
            EpipolarLinePointMatcher(0.5, -1.0, DATUM)


class TestMutualConsistency:
    """Test cases for mutual_consistency"""

    def test_keeps_only_round_trips(self):
        """Pairs survive only when both directions agree"""
        forward = [1, None, 0, 1]
        backward = [2, 0]
        assert mutual_consistency(forward, backward) == [(0, 1), (2, 0)]

    def test_every_kept_pair_round_trips(self):
        """Property: forward[i] == j and backward[j] == i for all output pairs"""
        rng = np.random.default_rng(0)
        for _ in range(50):
            n1, n2 = rng.integers(0, 12, size=2)
            forward = [None if rng.random() < 0.3 or n2 == 0 else int(rng.integers(0, n2)) for _ in range(n1)]
            backward = [None if rng.random() < 0.3 or n1 == 0 else int(rng.integers(0, n1)) for _ in range(n2)]
            pairs = mutual_consistency(forward, backward)
            for i, j in pairs:
                assert forward[i] == j and backward[j] == i
            assert len({j for _, j in pairs}) == len(pairs)

    def test_empty(self):
        """No matches in either direction"""
        assert mutual_consistency([], []) == []
        assert mutual_consistency([None, None], [None]) == []
