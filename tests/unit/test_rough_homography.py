"""
Unit tests for the camera-derived rough homography
"""

import math

import pytest
import numpy as np
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from cameras.transform import BBox
from common.errors import ConfigurationError
from ip_match.rough_homography import RoughHomographyEstimator
from tests.synthetic import DATUM, SIZE, nadir_camera


BOX = BBox(0, 0, SIZE, SIZE)


class TestRoughHomographyEstimator:
    """Test cases for RoughHomographyEstimator"""

    def test_rotation_recovered_translation_zeroed(self):
        """Yawed camera: the 2x2 block is that rotation, translation is zero"""
        cam1 = nadir_camera()
        cam2 = nadir_camera(x=40.0, yaw_deg=5.0)
        H = RoughHomographyEstimator(grid=30, seed=0).estimate(cam1, cam2, BOX, BOX, DATUM)

        assert H[0, 2] == 0.0 and H[1, 2] == 0.0
        block = H[:2, :2]
        assert np.linalg.det(block) == pytest.approx(1.0, abs=1e-3)
        angle = math.degrees(math.atan2(block[1, 0], block[0, 0]))
        assert abs(angle) == pytest.approx(5.0, abs=0.05)

    def test_grid_pairs_from_both_directions(self):
        """Grid samples are bounced both ways and kept only inside the other image"""
        cam1 = nadir_camera()
        cam2 = nadir_camera(x=100.0)
        pts_b, pts_a = RoughHomographyEstimator(grid=10).correspondences(cam1, cam2, BOX, BOX, DATUM)
        assert len(pts_a) == len(pts_b)
        assert 0 < len(pts_a) < 200
        assert np.all(BOX.contains(pts_a)) and np.all(BOX.contains(pts_b))
        # 100 m baseline at 2 m/px: image 2 sees everything 50 px to the left
        np.testing.assert_allclose(pts_a[:, 0] - pts_b[:, 0], 50.0, atol=0.1)

    def test_disjoint_footprints(self):
        """Cameras that see different ground are a configuration error"""
        cam1 = nadir_camera()
        cam2 = nadir_camera(x=5000.0)
        with pytest.raises(ConfigurationError):
            RoughHomographyEstimator(grid=20, seed=0).estimate(cam1, cam2, BOX, BOX, DATUM)

    def test_invalid_grid(self):
        """A grid needs at least two samples per side"""
        with pytest.raises(ConfigurationError):
            RoughHomographyEstimator(grid=1)
