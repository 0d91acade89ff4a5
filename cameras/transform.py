from __future__ import annotations
"""
2-D pixel transforms and bounding boxes.

A PixelTransform accounts for pre-processing applied to a raw image that the
camera model does not know about (subsampling, cropping, pre-alignment):

    forward: original camera pixel frame -> processing frame
    reverse: processing frame -> original camera pixel frame

Every transform is a 3x3 projective matrix, so translations, scalings and
homographies compose by matrix product.
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from common.utils import to_numpy_3x3


@dataclass(frozen=True)
class BBox:
    """Integer box with exclusive max corner: [x0, x1) x [y0, y1)."""
    x0: int
    y0: int
    x1: int
    y1: int

    @classmethod
    def from_shape(cls, shape: Tuple[int, ...]) -> "BBox":
        h, w = int(shape[0]), int(shape[1])
        return cls(0, 0, w, h)

    @property
    def width(self) -> int:
        return self.x1 - self.x0

    @property
    def height(self) -> int:
        return self.y1 - self.y0

    @property
    def diagonal(self) -> float:
        return math.hypot(self.width, self.height)

    @property
    def empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def intersects(self, other: "BBox") -> bool:
        if self.empty or other.empty:
            return False
        return self.x0 < other.x1 and other.x0 < self.x1 and self.y0 < other.y1 and other.y0 < self.y1

    def contains(self, pts: np.ndarray) -> np.ndarray:
        """Boolean mask for (N,2) points inside the box."""
        p = np.atleast_2d(np.asarray(pts, dtype=float))
        return (p[:, 0] >= self.x0) & (p[:, 0] < self.x1) & (p[:, 1] >= self.y0) & (p[:, 1] < self.y1)


def _apply(M: np.ndarray, pts: np.ndarray) -> np.ndarray:
    p = np.asarray(pts, dtype=float)
    single = p.ndim == 1
    p = np.atleast_2d(p)
    hom = np.hstack([p, np.ones((p.shape[0], 1))]) @ M.T
    out = hom[:, :2] / hom[:, 2:3]
    return out[0] if single else out


class PixelTransform:
    """Invertible projective 2-D mapping with forward/reverse application."""

    def __init__(self, matrix) -> None:
        M = to_numpy_3x3(matrix)
        if abs(np.linalg.det(M)) < 1e-15:
            raise ValueError("transform matrix is singular")
        self.matrix = M / M[2, 2] if M[2, 2] != 0 else M
        self._inv = np.linalg.inv(self.matrix)

    # -------- constructors --------
    @classmethod
    def identity(cls) -> "PixelTransform":
        return cls(np.eye(3))

    @classmethod
    def translation(cls, dx: float, dy: float) -> "PixelTransform":
        return cls(np.array([[1.0, 0.0, dx], [0.0, 1.0, dy], [0.0, 0.0, 1.0]]))

    @classmethod
    def scaling(cls, sx: float, sy: float | None = None) -> "PixelTransform":
        sy = sx if sy is None else sy
        return cls(np.diag([float(sx), float(sy), 1.0]))

    @classmethod
    def homography(cls, H) -> "PixelTransform":
        return cls(H)

    # -------- application --------
    def forward(self, pts: np.ndarray) -> np.ndarray:
        return _apply(self.matrix, pts)

    def reverse(self, pts: np.ndarray) -> np.ndarray:
        return _apply(self._inv, pts)

    def forward_bbox(self, box: BBox) -> BBox:
        return _map_bbox(self.matrix, box)

    def reverse_bbox(self, box: BBox) -> BBox:
        return _map_bbox(self._inv, box)

    # -------- algebra --------
    def inverse(self) -> "PixelTransform":
        return PixelTransform(self._inv)

    @property
    def is_identity(self) -> bool:
        return bool(np.allclose(self.matrix, np.eye(3)))

    def __repr__(self) -> str:
        return f"PixelTransform({np.array2string(self.matrix, precision=6, separator=', ')})"


def compose(*transforms: PixelTransform) -> PixelTransform:
    """
    compose(a, b, c) applies c first, then b, then a (function composition
    order), matching how the pipeline describes chained pre-processing.
    """
    M = np.eye(3)
    for t in transforms:
        M = M @ t.matrix
    return PixelTransform(M)


def _map_bbox(M: np.ndarray, box: BBox, samples: int = 16) -> BBox:
    if box.empty:
        return box
    # Sample the edges; projective maps can bulge between corners
    xs = np.linspace(box.x0, box.x1, samples)
    ys = np.linspace(box.y0, box.y1, samples)
    edge = np.vstack([
        np.column_stack([xs, np.full(samples, box.y0)]),
        np.column_stack([xs, np.full(samples, box.y1)]),
        np.column_stack([np.full(samples, box.x0), ys]),
        np.column_stack([np.full(samples, box.x1), ys]),
    ])
    mapped = _apply(M, edge)
    mapped = mapped[np.all(np.isfinite(mapped), axis=1)]
    if mapped.size == 0:
        return BBox(0, 0, 0, 0)
    x0, y0 = np.floor(mapped.min(axis=0)).astype(int)
    x1, y1 = np.ceil(mapped.max(axis=0)).astype(int)
    return BBox(int(x0), int(y0), int(x1), int(y1))
