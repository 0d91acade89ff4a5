from __future__ import annotations
"""
Outlier rejection by triangulation error and altitude.

Each correspondence is triangulated as the midpoint of closest approach of
the two pixel rays. Good matches intersect almost exactly and sit in a tight
altitude band, so two-class 1-D clustering of the errors and of the
altitudes separates them from the rest.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from cameras.transform import PixelTransform
from common.errors import NoConsensusError
from common.geo import Datum
from common.logging_setup import get_logger
from common.types import CorrespondenceSet


log = get_logger("ip_match.tri_alt_filter")


@dataclass
class ClusterStats:
    mean: float
    sigma: float
    size: int


def two_class_clusters(values: np.ndarray) -> Tuple[ClusterStats, ClusterStats]:
    """
    K=2 k-means over 1-D samples (cv2.kmeans), seeded with an above/below the
    mean split so the result is deterministic. Returns (lower-mean, higher-mean)
    stats. Constant input gives one populated cluster and one empty one.
    """
    v = np.asarray(values, dtype=np.float64).ravel()
    mean = float(v.mean())
    init = (v > mean).astype(np.int32)
    if not init.any() or init.all():
        whole = ClusterStats(mean=mean, sigma=float(v.std()), size=len(v))
        return whole, ClusterStats(mean=mean, sigma=0.0, size=0)

    criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 100, 1e-9)
    data = (v - mean).astype(np.float32).reshape(-1, 1)
    _, labels, _ = cv2.kmeans(
        data, 2, init.reshape(-1, 1).copy(), criteria, 1, cv2.KMEANS_USE_INITIAL_LABELS,
    )
    labels = labels.ravel()

    stats = []
    for k in (0, 1):
        members = v[labels == k]
        if members.size == 0:
            stats.append(ClusterStats(mean=mean, sigma=0.0, size=0))
        else:
            stats.append(ClusterStats(mean=float(members.mean()), sigma=float(members.std()), size=int(members.size)))
    stats.sort(key=lambda s: (s.size == 0, s.mean))
    return stats[0], stats[1]


def triangulate(
    pts1: np.ndarray, pts2: np.ndarray, cam1, cam2,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Midpoint triangulation for (N,2) original-frame pixel pairs.
    Returns ((N,3) points, (N,) ray distances); NaN for parallel rays.
    """
    o1 = np.array([cam1.camera_center(p) for p in pts1], dtype=float).reshape(-1, 3)
    o2 = np.array([cam2.camera_center(p) for p in pts2], dtype=float).reshape(-1, 3)
    d1 = cam1.pixels_to_vectors(pts1)
    d2 = cam2.pixels_to_vectors(pts2)

    w = o1 - o2
    b = np.sum(d1 * d2, axis=1)
    d = np.sum(d1 * w, axis=1)
    e = np.sum(d2 * w, axis=1)
    denom = 1.0 - b * b  # unit directions
    with np.errstate(divide="ignore", invalid="ignore"):
        s = (b * e - d) / denom
        t = (e - b * d) / denom
    p1 = o1 + s[:, None] * d1
    p2 = o2 + t[:, None] * d2

    points = 0.5 * (p1 + p2)
    errors = np.linalg.norm(p1 - p2, axis=1)
    bad = ~(np.abs(denom) > 1e-14)
    points[bad] = np.nan
    errors[bad] = np.nan
    return points, errors


class TriangulationAltitudeFilter:
    """
    Args:
        min_samples: fewest correspondences worth clustering
        min_inliers: fewest survivors accepted as a consensus
        sigma_factor: gate width in cluster standard deviations
        min_sigma: floor on cluster sigma (meters)
    """

    def __init__(
        self,
        min_samples: int = 3,
        min_inliers: int = 3,
        sigma_factor: float = 2.0,
        min_sigma: float = 0.5,
    ):
        self.min_samples = int(min_samples)
        self.min_inliers = int(min_inliers)
        self.sigma_factor = float(sigma_factor)
        self.min_sigma = float(min_sigma)

    def filter(
        self,
        corr: CorrespondenceSet,
        cam1,
        cam2,
        datum: Datum,
        tx1: Optional[PixelTransform] = None,
        tx2: Optional[PixelTransform] = None,
    ) -> List[int]:
        """Indices into `corr` that pass both the error and the altitude gate."""
        n = len(corr)
        if n == 0:
            return []
        if n < self.min_samples:
            raise NoConsensusError(f"Too few correspondences to filter: {n} < {self.min_samples}")

        pts1 = corr.points1()
        pts2 = corr.points2()
        if tx1 is not None:
            pts1 = tx1.reverse(pts1)
        if tx2 is not None:
            pts2 = tx2.reverse(pts2)

        points, errors = triangulate(pts1, pts2, cam1, cam2)
        valid = np.isfinite(errors)
        if np.count_nonzero(valid) < self.min_samples:
            raise NoConsensusError("Too few correspondences triangulate")
        altitudes = np.full(n, np.nan)
        altitudes[valid] = datum.altitude(points[valid])
        valid &= np.isfinite(altitudes)
        if np.count_nonzero(valid) < self.min_samples:
            raise NoConsensusError("Too few correspondences triangulate")

        err_low, _ = two_class_clusters(errors[valid])
        error_cutoff = err_low.mean + self.sigma_factor * max(err_low.sigma, self.min_sigma)

        alt_a, alt_b = two_class_clusters(altitudes[valid])
        alt = alt_a if alt_a.size >= alt_b.size else alt_b
        half = self.sigma_factor * max(alt.sigma, self.min_sigma)
        alt_lo, alt_hi = alt.mean - half, alt.mean + half

        with np.errstate(invalid="ignore"):
            keep = valid & (errors <= error_cutoff) & (altitudes >= alt_lo) & (altitudes <= alt_hi)
        inliers = np.flatnonzero(keep).tolist()

        log.info(
            "Triangulation/altitude filter",
            extra={"extra": {
                "total": n,
                "inliers": len(inliers),
                "error_cutoff": error_cutoff,
                "altitude_window": [alt_lo, alt_hi],
            }},
        )
        if len(inliers) < self.min_inliers:
            raise NoConsensusError(
                f"Triangulation/altitude filter kept {len(inliers)} matches, need {self.min_inliers}"
            )
        return inliers
