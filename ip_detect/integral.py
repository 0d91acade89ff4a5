from __future__ import annotations

from typing import Tuple

import cv2
import numpy as np


def integral_image(image: np.ndarray) -> np.ndarray:
    """
    Prefix-sum image of shape (H+1, W+1), float64, with a zero first row and
    column: ii[r, c] = sum(image[:r, :c]).
    """
    src = np.ascontiguousarray(image, dtype=np.float32)
    if src.ndim != 2:
        raise ValueError("integral_image expects a single-channel 2-D image")
    return cv2.integral(src, sdepth=cv2.CV_64F)


def _clipped_bounds(n: int, half: int) -> Tuple[np.ndarray, np.ndarray]:
    idx = np.arange(n)
    lo = np.clip(idx - half, 0, n)
    hi = np.clip(idx + half + 1, 0, n)
    return lo, hi


def box_sums(ii: np.ndarray, half: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sum and pixel count of the (2*half+1)^2 box centred on every pixel,
    clipped to the image. Returns (sums, areas), both (H, W) float64.
    """
    H, W = ii.shape[0] - 1, ii.shape[1] - 1
    r0, r1 = _clipped_bounds(H, half)
    c0, c1 = _clipped_bounds(W, half)
    sums = (
        ii[np.ix_(r1, c1)]
        - ii[np.ix_(r0, c1)]
        - ii[np.ix_(r1, c0)]
        + ii[np.ix_(r0, c0)]
    )
    areas = np.outer(r1 - r0, c1 - c0).astype(np.float64)
    return sums, areas
