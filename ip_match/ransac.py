from __future__ import annotations
"""
RANSAC homography fitting.

The model maps image-B pixels to image-A pixels; errors are Euclidean
distances in image A. Hypotheses come from random 4-point samples fitted
with cv2.findHomography (plain least squares); the best hypothesis is refit
on its inliers.
"""

from typing import Optional, Tuple

import cv2
import numpy as np

from cameras.transform import BBox
from common.errors import ConfigurationError, NoConsensusError
from common.logging_setup import get_logger


log = get_logger("ip_match.ransac")

MIN_SAMPLE = 4
DEFAULT_ITERATIONS = 100


def _fit(src: np.ndarray, dst: np.ndarray) -> Optional[np.ndarray]:
    H, _ = cv2.findHomography(src.astype(np.float64), dst.astype(np.float64), 0)
    if H is None or not np.all(np.isfinite(H)) or abs(H[2, 2]) < 1e-12:
        return None
    return H / H[2, 2]


def transfer_errors(H: np.ndarray, pts_a: np.ndarray, pts_b: np.ndarray) -> np.ndarray:
    """|H(b) - a| per correspondence; inf where the projection blows up."""
    hom = np.column_stack([pts_b, np.ones(len(pts_b))]) @ H.T
    with np.errstate(divide="ignore", invalid="ignore"):
        proj = hom[:, :2] / hom[:, 2:3]
        err = np.linalg.norm(proj - pts_a, axis=1)
    err[~np.isfinite(err)] = np.inf
    return err


class RansacHomographyFitter:
    """
    Args:
        iterations: number of random 4-point trials
        inlier_threshold: pixel error cutoff; default diag(bbox_a) / 100
        min_inliers: support a trial needs to qualify; default n // 2
        seed: seed for numpy's default_rng
    """

    def __init__(
        self,
        iterations: int = DEFAULT_ITERATIONS,
        inlier_threshold: Optional[float] = None,
        min_inliers: Optional[int] = None,
        seed: Optional[int] = None,
    ):
        if iterations < 1:
            raise ConfigurationError("iterations must be >= 1")
        if inlier_threshold is not None and not inlier_threshold > 0:
            raise ConfigurationError("inlier_threshold must be > 0")
        self.iterations = int(iterations)
        self.inlier_threshold = inlier_threshold
        self.min_inliers = min_inliers
        self.rng = np.random.default_rng(seed)

    def _threshold(self, pts_a: np.ndarray, bbox_a: Optional[BBox]) -> float:
        if self.inlier_threshold is not None:
            return float(self.inlier_threshold)
        if bbox_a is None:
            lo = np.floor(pts_a.min(axis=0)).astype(int)
            hi = np.ceil(pts_a.max(axis=0)).astype(int) + 1
            bbox_a = BBox(int(lo[0]), int(lo[1]), int(hi[0]), int(hi[1]))
        return bbox_a.diagonal / 100.0

    def fit(
        self,
        pts_a: np.ndarray,
        pts_b: np.ndarray,
        bbox_a: Optional[BBox] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Returns (H, inlier_indices) with H mapping B to A.

        Raises NoConsensusError with fewer than 4 correspondences or when no
        trial reaches the minimum support.
        """
        a = np.asarray(pts_a, dtype=float).reshape(-1, 2)
        b = np.asarray(pts_b, dtype=float).reshape(-1, 2)
        if len(a) != len(b):
            raise ValueError("point arrays must have the same length")
        n = len(a)
        if n < MIN_SAMPLE:
            raise NoConsensusError(f"RANSAC needs at least {MIN_SAMPLE} correspondences, got {n}")

        threshold = self._threshold(a, bbox_a)
        need = max(MIN_SAMPLE, n // 2 if self.min_inliers is None else int(self.min_inliers))

        best_H: Optional[np.ndarray] = None
        best_count = 0
        for _ in range(self.iterations):
            sample = self.rng.choice(n, MIN_SAMPLE, replace=False)
            H = _fit(b[sample], a[sample])
            if H is None:
                continue
            count = int(np.count_nonzero(transfer_errors(H, a, b) < threshold))
            # strict: ties keep the earlier trial
            if count >= need and count > best_count:
                best_H, best_count = H, count

        if best_H is None:
            raise NoConsensusError(
                f"RANSAC found no model with at least {need} of {n} inliers"
            )

        inliers = np.flatnonzero(transfer_errors(best_H, a, b) < threshold)
        refit = _fit(b[inliers], a[inliers])
        if refit is not None:
            refit_inliers = np.flatnonzero(transfer_errors(refit, a, b) < threshold)
            if len(refit_inliers) >= len(inliers):
                best_H, inliers = refit, refit_inliers

        log.debug(
            "RANSAC homography",
            extra={"extra": {"inliers": int(len(inliers)), "total": n, "threshold": round(threshold, 3)}},
        )
        return best_H, inliers


def homography_fit(
    pts_b: np.ndarray,
    pts_a: np.ndarray,
    bbox_a: BBox,
    *,
    iterations: int = DEFAULT_ITERATIONS,
    seed: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Coarse B -> A fit with a loose threshold (diag / 10), used for rough
    alignment and for sanity-checking aligned matches.
    """
    fitter = RansacHomographyFitter(
        iterations=iterations, inlier_threshold=bbox_a.diagonal / 10.0, seed=seed,
    )
    return fitter.fit(pts_a, pts_b, bbox_a)
