from __future__ import annotations
"""
Epipolar-constrained point matching.

For every point of image A the epipolar line in image B is built from the
camera models and the datum; only B points close to that line compete, and a
descriptor distance ratio test picks the winner. Run forward and backward and
keep mutually consistent pairs only.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from cameras.transform import PixelTransform
from common.errors import ConfigurationError
from common.geo import Datum
from common.logging_setup import get_logger
from common.types import InterestPoint, descriptors_to_array, points_to_array
from common.utils import ProgressFn, no_progress


log = get_logger("ip_match.epipolar")

NUM_CANDIDATES = 10


class EpipolarLinePointMatcher:
    """
    Args:
        threshold: descriptor ratio; closest must be < threshold * second closest
        epipolar_threshold: max distance (processing-frame pixels) to the line
        datum: reference surface the pixel rays are intersected with
        num_candidates: closest-to-line points kept before the ratio test
    """

    def __init__(
        self,
        threshold: float,
        epipolar_threshold: float,
        datum: Datum,
        num_candidates: int = NUM_CANDIDATES,
    ):
        if not threshold > 0:
            raise ConfigurationError("ratio threshold must be > 0")
        if not epipolar_threshold > 0:
            raise ConfigurationError("epipolar_threshold must be > 0")
        if num_candidates < 1:
            raise ConfigurationError("num_candidates must be >= 1")
        self.threshold = float(threshold)
        self.epipolar_threshold = float(epipolar_threshold)
        self.datum = datum
        self.num_candidates = int(num_candidates)

    # -----------------------------
    # Geometry helpers
    # -----------------------------

    @staticmethod
    def epipolar_lines(
        features: np.ndarray,
        datum: Datum,
        cam_ip,
        cam_obj,
        tx_obj: Optional[PixelTransform] = None,
    ) -> np.ndarray:
        """
        Lines (N,3) with a^2 + b^2 = 1 in cam_obj's (processing) frame for
        (N,2) original-frame features of cam_ip. NaN rows where the pixel ray
        misses the datum or projects behind cam_obj.

        The line passes through the projections of two points of the pixel
        ray: its datum intersection and the point halfway back to the camera.
        """
        feats = np.atleast_2d(np.asarray(features, dtype=float))
        centers = np.array([cam_ip.camera_center(f) for f in feats], dtype=float).reshape(-1, 3)
        dirs = cam_ip.pixels_to_vectors(feats)
        hits = datum.intersect_rays(centers, dirs)
        mids = centers + 0.5 * (hits - centers)

        ep0 = cam_obj.points_to_pixels(hits)
        ep1 = cam_obj.points_to_pixels(mids)
        if tx_obj is not None:
            ep0 = tx_obj.forward(ep0)
            ep1 = tx_obj.forward(ep1)

        h0 = np.column_stack([ep0, np.ones(len(ep0))])
        h1 = np.column_stack([ep1, np.ones(len(ep1))])
        lines = np.cross(h0, h1)
        norm = np.hypot(lines[:, 0], lines[:, 1])
        with np.errstate(invalid="ignore", divide="ignore"):
            lines = lines / norm[:, None]
        lines[~(norm > 1e-12)] = np.nan
        return lines

    @classmethod
    def epipolar_line(cls, feature, datum: Datum, cam_ip, cam_obj) -> Optional[np.ndarray]:
        """Single-feature variant in cam_obj's original frame; None on a miss."""
        line = cls.epipolar_lines(np.asarray(feature, dtype=float)[None, :], datum, cam_ip, cam_obj)[0]
        return None if not np.all(np.isfinite(line)) else line

    @staticmethod
    def distance_point_line(line: np.ndarray, points: np.ndarray) -> np.ndarray:
        """|a x + b y + c| / sqrt(a^2 + b^2) for (N,2) points (or a single point)."""
        a, b, c = (float(v) for v in line)
        p = np.asarray(points, dtype=float)
        return np.abs(a * p[..., 0] + b * p[..., 1] + c) / np.hypot(a, b)

    # -----------------------------
    # Matching
    # -----------------------------

    def __call__(
        self,
        ip1: Sequence[InterestPoint],
        ip2: Sequence[InterestPoint],
        cam1,
        cam2,
        tx1: Optional[PixelTransform] = None,
        tx2: Optional[PixelTransform] = None,
        progress: ProgressFn = no_progress,
    ) -> List[Optional[int]]:
        return self.match(ip1, ip2, cam1, cam2, tx1, tx2, progress=progress)

    def match(
        self,
        ip1: Sequence[InterestPoint],
        ip2: Sequence[InterestPoint],
        cam1,
        cam2,
        tx1: Optional[PixelTransform] = None,
        tx2: Optional[PixelTransform] = None,
        progress: ProgressFn = no_progress,
    ) -> List[Optional[int]]:
        """
        output[i] is the index into ip2 matched to ip1[i], or None.
        """
        out: List[Optional[int]] = [None] * len(ip1)
        if not ip1 or not ip2:
            progress(1.0)
            return out

        tx1 = tx1 or PixelTransform.identity()
        tx2 = tx2 or PixelTransform.identity()

        pts1_org = tx1.reverse(points_to_array(ip1))
        lines = self.epipolar_lines(pts1_org, self.datum, cam1, cam2, tx2)

        pts2 = points_to_array(ip2)
        des1 = descriptors_to_array(ip1)
        des2 = descriptors_to_array(ip2)
        hom2 = np.column_stack([pts2, np.ones(len(pts2))])

        k = min(self.num_candidates, len(ip2))
        n = len(ip1)
        missed = 0
        for i in range(n):
            if i and i % 256 == 0:
                progress(i / n)
            line = lines[i]
            if not np.all(np.isfinite(line)):
                missed += 1
                continue
            dist = np.abs(hom2 @ line)
            closest = np.argsort(dist, kind="stable")[:k]
            closest = closest[dist[closest] <= self.epipolar_threshold]
            if closest.size == 0:
                continue

            d = np.linalg.norm(des2[closest] - des1[i], axis=1)
            order = np.argsort(d, kind="stable")
            if closest.size == 1 or d[order[0]] < self.threshold * d[order[1]]:
                out[i] = int(closest[order[0]])
        progress(1.0)

        if missed:
            log.debug("Pixel rays missed the datum", extra={"extra": {"count": missed, "total": n}})
        return out


def mutual_consistency(
    forward: Sequence[Optional[int]],
    backward: Sequence[Optional[int]],
) -> List[Tuple[int, int]]:
    """Pairs (i, j) with forward[i] == j and backward[j] == i."""
    pairs: List[Tuple[int, int]] = []
    for i, j in enumerate(forward):
        if j is None:
            continue
        if 0 <= j < len(backward) and backward[j] == i:
            pairs.append((i, j))
    return pairs
