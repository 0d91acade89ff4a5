from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

import numpy as np
import yaml

from common.utils import to_numpy_3x3


# -----------------------------
# Camera model
# -----------------------------

@dataclass
class PinholeCamera:
    """
    Ideal pinhole camera in a body-fixed cartesian frame.

    Attributes:
        center: camera center (3,), meters.
        R: 3x3 rotation world -> camera (camera looks along +Z, image +Y down).
        fx, fy, cx, cy: intrinsics in pixels.
        width, height: nominal image size (informational).
    """
    center: np.ndarray
    R: np.ndarray
    fx: float
    fy: float
    cx: float
    cy: float
    width: int = 0
    height: int = 0
    K: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.center = np.asarray(self.center, dtype=float).reshape(3)
        self.R = to_numpy_3x3(self.R)
        if not np.allclose(self.R @ self.R.T, np.eye(3), atol=1e-6):
            raise ValueError("R must be a rotation matrix")
        if self.fx <= 0 or self.fy <= 0:
            raise ValueError("focal lengths must be > 0")
        self.K = np.array([[self.fx, 0.0, self.cx],
                           [0.0, self.fy, self.cy],
                           [0.0, 0.0, 1.0]], dtype=float)

    # -------- constructors --------
    @classmethod
    def look_at(
        cls,
        center: Sequence[float],
        target: Sequence[float],
        up: Sequence[float],
        *,
        fx: float,
        fy: Optional[float] = None,
        cx: float,
        cy: float,
        width: int = 0,
        height: int = 0,
    ) -> "PinholeCamera":
        """Build the rotation from a viewing target and an approximate up vector."""
        c = np.asarray(center, dtype=float)
        z = np.asarray(target, dtype=float) - c
        z /= np.linalg.norm(z)
        # image +Y points opposite to `up`
        x = np.cross(-np.asarray(up, dtype=float), z)
        n = np.linalg.norm(x)
        if n < 1e-12:
            raise ValueError("up vector is parallel to the viewing direction")
        x /= n
        y = np.cross(z, x)
        R = np.vstack([x, y, z])
        return cls(center=c, R=R, fx=float(fx), fy=float(fx if fy is None else fy),
                   cx=float(cx), cy=float(cy), width=int(width), height=int(height))

    @classmethod
    def from_dict(cls, D: Dict) -> "PinholeCamera":
        """
        Expected fields:
            center: [x, y, z]
            rotation: 3x3 world->camera  OR  look_at: [x, y, z] with up: [x, y, z]
            fx, fy, cx, cy
            resolution: {width, height}
        """
        W = int(D.get("resolution", {}).get("width", 0))
        H = int(D.get("resolution", {}).get("height", 0))
        fx = float(D["fx"])
        fy = float(D.get("fy", fx))
        cx = float(D.get("cx", W / 2.0))
        cy = float(D.get("cy", H / 2.0))
        if "rotation" in D:
            return cls(center=D["center"], R=np.asarray(D["rotation"], dtype=float),
                       fx=fx, fy=fy, cx=cx, cy=cy, width=W, height=H)
        if "look_at" in D:
            return cls.look_at(D["center"], D["look_at"], D.get("up", [0.0, 0.0, 1.0]),
                               fx=fx, fy=fy, cx=cx, cy=cy, width=W, height=H)
        raise ValueError("camera needs either 'rotation' or 'look_at'")

    @classmethod
    def from_yaml(cls, path: str) -> "PinholeCamera":
        with open(path, "r") as f:
            return cls.from_dict(yaml.safe_load(f))

    # -------- projection --------
    def camera_center(self, pixel=None) -> np.ndarray:
        """Ray origin; the same for every pixel of a pinhole camera."""
        return self.center.copy()

    def pixels_to_vectors(self, pixels: np.ndarray) -> np.ndarray:
        """(N,2) pixels -> (N,3) unit ray directions in the world frame."""
        p = np.atleast_2d(np.asarray(pixels, dtype=float))
        rays_cam = np.column_stack([
            (p[:, 0] - self.cx) / self.fx,
            (p[:, 1] - self.cy) / self.fy,
            np.ones(p.shape[0]),
        ])
        rays = rays_cam @ self.R  # R^T applied to row vectors
        return rays / np.linalg.norm(rays, axis=1, keepdims=True)

    def pixel_to_vector(self, pixel) -> np.ndarray:
        return self.pixels_to_vectors(np.asarray(pixel, dtype=float)[None, :])[0]

    def points_to_pixels(self, points: np.ndarray) -> np.ndarray:
        """(N,3) world points -> (N,2) pixels; NaN for points behind the camera."""
        X = np.atleast_2d(np.asarray(points, dtype=float))
        Xc = (X - self.center) @ self.R.T
        out = np.full((X.shape[0], 2), np.nan, dtype=float)
        front = Xc[:, 2] > 1e-12
        out[front, 0] = self.fx * Xc[front, 0] / Xc[front, 2] + self.cx
        out[front, 1] = self.fy * Xc[front, 1] / Xc[front, 2] + self.cy
        return out

    def point_to_pixel(self, point) -> np.ndarray:
        return self.points_to_pixels(np.asarray(point, dtype=float)[None, :])[0]
