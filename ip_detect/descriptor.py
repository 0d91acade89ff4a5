from __future__ import annotations
"""
Simple-gradient descriptor.

A scale-sized square patch around each point is resampled to a fixed grid;
Sobel gradients are pooled over 4x4 cells into (sum|dx|, sum|dy|, sum dx,
sum dy), giving a 64-D unit vector. Good enough for L2 ratio matching of
small-baseline stereo pairs; orientation is not estimated.
"""

from dataclasses import dataclass
from typing import List

import cv2
import numpy as np

from common.types import InterestPoint


@dataclass
class SGradDescriptor:
    grid: int = 4
    cell_px: int = 5
    support: float = 2.5     # patch half width in units of point scale
    min_radius: int = 3

    @property
    def length(self) -> int:
        return self.grid * self.grid * 4

    def _radius(self, scale: float) -> int:
        return max(self.min_radius, int(round(self.support * float(scale))))

    def __call__(self, image: np.ndarray, points: List[InterestPoint]) -> List[InterestPoint]:
        """Attach descriptors in place and return the same list."""
        if not points:
            return points
        img = np.ascontiguousarray(image, dtype=np.float32)
        img = np.where(np.isfinite(img), img, 0.0).astype(np.float32)

        pad = max(self._radius(p.scale) for p in points) + 1
        padded = cv2.copyMakeBorder(img, pad, pad, pad, pad, cv2.BORDER_REFLECT_101)
        gx = cv2.Sobel(padded, cv2.CV_32F, 1, 0, ksize=3)
        gy = cv2.Sobel(padded, cv2.CV_32F, 0, 1, ksize=3)

        side = self.grid * self.cell_px
        for p in points:
            r = self._radius(p.scale)
            y0 = p.iy + pad - r
            x0 = p.ix + pad - r
            win = (slice(y0, y0 + 2 * r + 1), slice(x0, x0 + 2 * r + 1))
            dx = cv2.resize(gx[win], (side, side), interpolation=cv2.INTER_AREA)
            dy = cv2.resize(gy[win], (side, side), interpolation=cv2.INTER_AREA)
            p.descriptor = self._pool(dx, dy)
        return points

    def _pool(self, dx: np.ndarray, dy: np.ndarray) -> np.ndarray:
        g, c = self.grid, self.cell_px
        # (g, c, g, c) -> sum over the c axes
        def cells(a: np.ndarray) -> np.ndarray:
            return a.reshape(g, c, g, c).sum(axis=(1, 3)).ravel()

        desc = np.concatenate([
            cells(np.abs(dx)), cells(np.abs(dy)), cells(dx), cells(dy),
        ]).astype(np.float32)
        n = float(np.linalg.norm(desc))
        if n > 0:
            desc /= n
        return desc
