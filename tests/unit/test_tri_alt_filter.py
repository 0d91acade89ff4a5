"""
Unit tests for the triangulation error / altitude filter
"""

import pytest
import numpy as np
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from cameras.transform import PixelTransform
from common.errors import NoConsensusError
from common.types import CorrespondenceSet, InterestPoint
from ip_match.tri_alt_filter import TriangulationAltitudeFilter, triangulate, two_class_clusters
from tests.synthetic import DATUM, bounce, nadir_camera


def _corr(pts1, pts2):
    return CorrespondenceSet(
        [InterestPoint(x=x, y=y) for x, y in pts1],
        [InterestPoint(x=x, y=y) for x, y in pts2],
    )


@pytest.fixture
def rig():
    return nadir_camera(), nadir_camera(x=40.0)


def _scene(cam1, cam2, n_in=30, n_out=8, seed=0):
    """True pairs plus pairs whose right point is pushed 30-60 px across the baseline."""
    rng = np.random.default_rng(seed)
    pts1 = rng.uniform(60.0, 450.0, size=(n_in + n_out, 2))
    pts2 = bounce(pts1, cam1, cam2)
    shift = rng.uniform(30.0, 60.0, size=n_out) * rng.choice([-1.0, 1.0], size=n_out)
    pts2[n_in:, 1] += shift
    return pts1, pts2


class TestTriangulate:
    """Test cases for midpoint triangulation"""

    def test_exact_pairs_meet_on_ground(self, rig):
        """Consistent pixels triangulate onto the datum with ~zero error"""
        cam1, cam2 = rig
        pts1 = np.array([[100.0, 100.0], [256.0, 256.0], [400.0, 50.0]])
        points, errors = triangulate(pts1, bounce(pts1, cam1, cam2), cam1, cam2)
        assert np.all(errors < 1e-4)
        np.testing.assert_allclose(DATUM.altitude(points), 0.0, atol=1e-3)

    def test_skew_rays_have_error(self, rig):
        """Across-baseline offsets make the rays miss each other"""
        cam1, cam2 = rig
        pts1 = np.array([[200.0, 200.0]])
        pts2 = bounce(pts1, cam1, cam2) + [0.0, 30.0]
        _, errors = triangulate(pts1, pts2, cam1, cam2)
        assert errors[0] > 10.0

    def test_parallel_rays(self):
        """Parallel rays cannot be triangulated"""
        cam1 = nadir_camera()
        cam2 = nadir_camera(x=40.0)
        points, errors = triangulate(np.array([[256.0, 256.0]]), np.array([[256.0, 256.0]]), cam1, cam2)
        assert np.isnan(errors[0]) and np.all(np.isnan(points[0]))


class TestTwoClassClusters:
    """Test cases for the 1-D two-class clustering"""

    def test_separates_groups(self):
        """Two well separated groups split cleanly, lower first"""
        v = np.array([0.1, 0.2, 0.15, 0.12, 50.0, 52.0, 51.0])
        low, high = two_class_clusters(v)
        assert low.size == 4 and high.size == 3
        assert low.mean == pytest.approx(np.mean(v[:4]))
        assert high.mean == pytest.approx(51.0)

    def test_constant_input(self):
        """A constant sample is one cluster"""
        low, high = two_class_clusters(np.full(5, 3.0))
        assert low.size == 5 and low.mean == 3.0 and low.sigma == 0.0
        assert high.size == 0


class TestTriangulationAltitudeFilter:
    """Test cases for TriangulationAltitudeFilter"""

    def test_rejects_outliers(self, rig):
        """All skewed pairs are removed and every true pair is kept"""
        cam1, cam2 = rig
        pts1, pts2 = _scene(cam1, cam2)
        inliers = TriangulationAltitudeFilter().filter(_corr(pts1, pts2), cam1, cam2, DATUM)
        assert inliers == list(range(30))

    def test_transforms_are_reversed(self, rig):
        """Processing-frame points are mapped back before triangulating"""
        cam1, cam2 = rig
        pts1, pts2 = _scene(cam1, cam2, seed=3)
        tx1 = PixelTransform.scaling(0.25)
        tx2 = PixelTransform.translation(7.0, -3.0)
        corr = _corr(tx1.forward(pts1), tx2.forward(pts2))
        inliers = TriangulationAltitudeFilter().filter(corr, cam1, cam2, DATUM, tx1, tx2)
        assert inliers == list(range(30))

    def test_altitude_outliers(self, rig):
        """Pairs consistent with a point far above the ground are removed"""
        cam1, cam2 = rig
        pts1, pts2 = _scene(cam1, cam2, n_out=0, seed=5)
        # a few correspondences of points 400 m above the datum
        high1 = np.array([[150.0, 200.0], [300.0, 320.0], [220.0, 90.0]])
        hits = DATUM.intersect_rays(np.repeat(cam1.center[None, :], 3, axis=0), cam1.pixels_to_vectors(high1), alt_m=400.0)
        high2 = cam2.points_to_pixels(hits)
        corr = _corr(np.vstack([pts1, high1]), np.vstack([pts2, high2]))
        inliers = TriangulationAltitudeFilter().filter(corr, cam1, cam2, DATUM)
        assert inliers == list(range(30))

    def test_empty_input(self, rig):
        """No correspondences is not an error"""
        cam1, cam2 = rig
        assert TriangulationAltitudeFilter().filter(CorrespondenceSet(), cam1, cam2, DATUM) == []

    def test_too_few_samples(self, rig):
        """Below min_samples there is no consensus"""
        cam1, cam2 = rig
        pts1, pts2 = _scene(cam1, cam2, n_in=2, n_out=0)
        with pytest.raises(NoConsensusError):
            TriangulationAltitudeFilter().filter(_corr(pts1, pts2), cam1, cam2, DATUM)

    def test_too_few_survivors(self, rig):
        """min_inliers above the number of good pairs fails"""
        cam1, cam2 = rig
        pts1, pts2 = _scene(cam1, cam2, n_in=5, n_out=3)
        with pytest.raises(NoConsensusError):
            TriangulationAltitudeFilter(min_inliers=6).filter(_corr(pts1, pts2), cam1, cam2, DATUM)
