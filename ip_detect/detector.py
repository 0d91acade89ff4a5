from __future__ import annotations
"""
Multi-scale blob detector on an integral image.

- BoxLoGOperator: centre-minus-surround box approximation of a (negated,
  scale-normalised) Laplacian of Gaussian; bright blobs give positive peaks.
- ScaleSpaceDetector: slides a 3-level window over N scales, keeps strict
  3x3x3 maxima, thresholds them in the same pass and culls to a budget.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from common.errors import ConfigurationError
from common.logging_setup import get_logger
from common.types import InterestPoint
from common.utils import ProgressFn, Timer, no_progress
from ip_detect.integral import box_sums, integral_image


log = get_logger("ip_detect.detector")

DEFAULT_SCALES = 8
MIN_IMAGE_SIZE = 5

# Inner-box half width (n + 0.5) at which a Gaussian blob of sigma s peaks
# is about 1.13 * s for the n / 2n centre-surround pair.
_BOX_TO_SIGMA = 1.13


# -----------------------------
# Interest operator
# -----------------------------

@dataclass
class BoxLoGOperator:
    """
    Response at level k: mean(inner box, half n) - mean(ring out to half 2n),
    with n = k + 1. Both terms are means, so flat regions give exactly zero and
    responses are comparable across levels.
    """
    threshold: float = 0.0

    @staticmethod
    def half_size(scale: int) -> int:
        return int(scale) + 1

    def float_scale(self, scale: int) -> float:
        return (self.half_size(scale) + 0.5) / _BOX_TO_SIGMA

    def response(self, ii: np.ndarray, scale: int, out: Optional[np.ndarray] = None) -> np.ndarray:
        n = self.half_size(scale)
        s_in, a_in = box_sums(ii, n)
        s_out, a_out = box_sums(ii, 2 * n)
        ring_area = a_out - a_in
        inner = s_in / a_in
        ring = np.divide(s_out - s_in, ring_area, out=inner.copy(), where=ring_area > 0)
        return np.subtract(inner, ring, out=out)

    def passes(self, interest: np.ndarray) -> np.ndarray:
        return np.abs(interest) > self.threshold


@dataclass
class ScaleLevelData:
    """One live level of the sliding window."""
    scale: int
    interest: np.ndarray


# -----------------------------
# Extremum search
# -----------------------------

def find_maxima(low: np.ndarray, mid: np.ndarray, high: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Interior pixels (1-px border excluded) whose mid-level value is strictly
    greater than all 26 neighbours in the 3x3x3 stencil. Row-major order.
    """
    H, W = mid.shape
    c = mid[1:-1, 1:-1]
    mask = (c > low[1:-1, 1:-1]) & (c > high[1:-1, 1:-1])
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dy == 0 and dx == 0:
                continue
            sl = (slice(1 + dy, H - 1 + dy), slice(1 + dx, W - 1 + dx))
            mask &= (c > low[sl]) & (c > mid[sl]) & (c > high[sl])
    rows, cols = np.nonzero(mask)
    return rows + 1, cols + 1


def cull_points(points: List[InterestPoint], max_points: int) -> List[InterestPoint]:
    """
    Keep the `max_points` strongest points by |interest|. Stable sort: on
    exact ties the earlier-detected point wins. Non-positive budget keeps all.
    """
    if max_points <= 0 or len(points) <= max_points:
        return points
    ranked = sorted(points, key=lambda p: abs(p.interest), reverse=True)
    return ranked[:max_points]


# -----------------------------
# Detector
# -----------------------------

class ScaleSpaceDetector:
    """
    Detect blobs over `num_scales` box-LoG levels.

    Args:
        max_points: culling budget (<= 0 disables culling)
        num_scales: number of levels (>= 3)
        threshold: minimum |interest| for a maximum to be kept
    """

    def __init__(self, max_points: int = 200, num_scales: int = DEFAULT_SCALES, threshold: float = 0.0):
        if num_scales < 3:
            raise ConfigurationError("num_scales must be >= 3")
        if threshold < 0:
            raise ConfigurationError("threshold must be >= 0")
        self.max_points = int(max_points)
        self.num_scales = int(num_scales)
        self.operator = BoxLoGOperator(threshold=float(threshold))

    def __call__(self, image: np.ndarray, max_points: Optional[int] = None) -> List[InterestPoint]:
        return self.process_image(image, max_points=max_points)

    def process_image(
        self,
        image: np.ndarray,
        max_points: Optional[int] = None,
        progress: ProgressFn = no_progress,
    ) -> List[InterestPoint]:
        budget = self.max_points if max_points is None else int(max_points)

        # Own dense copy; callers may hand in views or crops
        buf = np.array(image, dtype=np.float32, copy=True)
        if buf.ndim != 2:
            raise ValueError("detector expects a single-channel 2-D image")
        H, W = buf.shape
        if H < MIN_IMAGE_SIZE or W < MIN_IMAGE_SIZE:
            log.debug("Image too small for detection", extra={"extra": {"width": W, "height": H}})
            progress(1.0)
            return []

        with Timer(log, "Creating integral image"):
            ii = integral_image(buf)

        # Fixed 3-slot ring buffer; level k lives in slot k % 3
        slots = [ScaleLevelData(scale=-1, interest=np.empty((H, W), dtype=np.float64)) for _ in range(3)]

        def compute(scale: int) -> None:
            slot = slots[scale % 3]
            with Timer(log, f"Scale {scale}"):
                self.operator.response(ii, scale, out=slot.interest)
            slot.scale = scale

        compute(0)
        compute(1)
        progress(2.0 / self.num_scales)

        points: List[InterestPoint] = []
        for scale in range(2, self.num_scales):
            compute(scale)
            low = slots[(scale - 2) % 3].interest
            mid = slots[(scale - 1) % 3].interest
            high = slots[scale % 3].interest

            rows, cols = find_maxima(low, mid, high)
            values = mid[rows, cols]
            keep = self.operator.passes(values)
            rows, cols, values = rows[keep], cols[keep], values[keep]

            fscale = self.operator.float_scale(scale - 1)
            points.extend(
                InterestPoint(
                    x=float(c), y=float(r), ix=int(c), iy=int(r),
                    scale=fscale, interest=float(v), polarity=bool(v > 0),
                    scale_lvl=scale - 1,
                )
                for r, c, v in zip(rows.tolist(), cols.tolist(), values.tolist())
            )
            progress((scale + 1.0) / self.num_scales)

        found = len(points)
        points = cull_points(points, budget)
        if found > len(points):
            log.debug(
                "Culled interest points",
                extra={"extra": {
                    "found": found,
                    "kept": len(points),
                    "best": points[0].interest if points else None,
                    "worst": points[-1].interest if points else None,
                }},
            )
        return points


def detect_interest_points(image: np.ndarray, detector: ScaleSpaceDetector) -> List[InterestPoint]:
    return detector.process_image(image)
