from __future__ import annotations
"""
Rough B -> A homography from camera geometry alone.

A regular grid of pixels from each image is bounced off the datum into the
other camera; pairs landing inside the other image feed a loose RANSAC fit.
Used to pre-align image B before matching.
"""

from typing import List, Tuple

import numpy as np

from cameras.transform import BBox, PixelTransform
from common.errors import ConfigurationError, NoConsensusError
from common.geo import Datum
from common.logging_setup import get_logger
from ip_match.ransac import homography_fit


log = get_logger("ip_match.rough_homography")

MIN_ROUGH_INLIERS = 10


def _grid(box: BBox, n: int) -> np.ndarray:
    xs = np.linspace(box.x0, box.x1 - 1, n)
    ys = np.linspace(box.y0, box.y1 - 1, n)
    gx, gy = np.meshgrid(xs, ys)
    return np.column_stack([gx.ravel(), gy.ravel()])


def _bounce(pixels: np.ndarray, cam_src, cam_dst, datum: Datum) -> np.ndarray:
    """Project src pixels through the datum into cam_dst; NaN rows on misses."""
    centers = np.array([cam_src.camera_center(p) for p in pixels], dtype=float).reshape(-1, 3)
    hits = datum.intersect_rays(centers, cam_src.pixels_to_vectors(pixels))
    return cam_dst.points_to_pixels(hits)


class RoughHomographyEstimator:
    def __init__(self, grid: int = 100, seed: int | None = None):
        if grid < 2:
            raise ConfigurationError("grid must be >= 2")
        self.grid = int(grid)
        self.seed = seed

    def correspondences(
        self, cam_a, cam_b, bbox_a: BBox, bbox_b: BBox, datum: Datum,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """(pts_b, pts_a) pairs from both bounce directions."""
        pts_b: List[np.ndarray] = []
        pts_a: List[np.ndarray] = []

        grid_a = _grid(bbox_a, self.grid)
        in_b = _bounce(grid_a, cam_a, cam_b, datum)
        ok = np.all(np.isfinite(in_b), axis=1) & bbox_b.contains(np.nan_to_num(in_b, nan=-1e9))
        pts_a.append(grid_a[ok])
        pts_b.append(in_b[ok])

        grid_b = _grid(bbox_b, self.grid)
        in_a = _bounce(grid_b, cam_b, cam_a, datum)
        ok = np.all(np.isfinite(in_a), axis=1) & bbox_a.contains(np.nan_to_num(in_a, nan=-1e9))
        pts_a.append(in_a[ok])
        pts_b.append(grid_b[ok])

        return np.vstack(pts_b), np.vstack(pts_a)

    def estimate(self, cam_a, cam_b, bbox_a: BBox, bbox_b: BBox, datum: Datum) -> np.ndarray:
        """
        Homography B -> A with the translation removed.

        Raises ConfigurationError when fewer than 10 grid pairs agree or
        when the result does not map bbox_b onto bbox_a at all.
        """
        pts_b, pts_a = self.correspondences(cam_a, cam_b, bbox_a, bbox_b, datum)
        log.debug("Rough homography samples", extra={"extra": {"pairs": int(len(pts_a))}})

        try:
            H, inliers = homography_fit(pts_b, pts_a, bbox_a, seed=self.seed)
        except NoConsensusError as e:
            raise ConfigurationError(f"Unable to compute rough homography: {e}") from e
        if len(inliers) < MIN_ROUGH_INLIERS:
            raise ConfigurationError(
                f"Unable to compute rough homography: {len(inliers)} inliers, need {MIN_ROUGH_INLIERS}"
            )

        H = H.copy()
        H[0, 2] = 0.0
        H[1, 2] = 0.0

        mapped = PixelTransform.homography(H).forward_bbox(bbox_b)
        if not mapped.intersects(bbox_a):
            raise ConfigurationError("The transformed second image bounding box does not overlap the first")

        log.info(
            "Rough homography",
            extra={"extra": {"H": np.round(H, 6).tolist(), "inliers": int(len(inliers))}},
        )
        return H
