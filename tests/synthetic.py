"""
Synthetic stereo scenes for tests.

Cameras hover above the north pole of a spherical datum and look straight
down; at 1000 m with fx = 500 the ground sample distance is 2 m/px, and over
a 512 px footprint the sphere is flat to well under a pixel.
"""

import math
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from cameras.pinhole import PinholeCamera
from common.geo import Datum


R_SPHERE = 6371000.0
DATUM = Datum.sphere(R_SPHERE, "test_sphere")
ALT = 1000.0
FX = 500.0
SIZE = 512


def render_blobs(
    shape: Tuple[int, int],
    centers: Sequence[Tuple[float, float]],
    sigma: float = 3.0,
    amplitudes: Optional[Sequence[float]] = None,
) -> np.ndarray:
    """Sum of isotropic Gaussians (x, y centers) on a zero background."""
    H, W = shape
    img = np.zeros((H, W), dtype=np.float64)
    amps = [1.0] * len(centers) if amplitudes is None else list(amplitudes)
    r = int(math.ceil(6 * sigma))
    for (cx, cy), a in zip(centers, amps):
        x0, x1 = max(0, int(cx) - r), min(W, int(cx) + r + 1)
        y0, y1 = max(0, int(cy) - r), min(H, int(cy) + r + 1)
        yy, xx = np.mgrid[y0:y1, x0:x1]
        img[y0:y1, x0:x1] += a * np.exp(-((xx - cx) ** 2 + (yy - cy) ** 2) / (2.0 * sigma ** 2))
    return img.astype(np.float32)


def nadir_camera(x: float = 0.0, y: float = 0.0, yaw_deg: float = 0.0, alt: float = ALT) -> PinholeCamera:
    """Camera at (x, y) meters from the pole, image top toward +Y rotated by yaw."""
    yaw = math.radians(yaw_deg)
    return PinholeCamera.look_at(
        (x, y, R_SPHERE + alt),
        (x, y, R_SPHERE),
        (math.sin(yaw), math.cos(yaw), 0.0),
        fx=FX, cx=SIZE / 2.0, cy=SIZE / 2.0, width=SIZE, height=SIZE,
    )


def bounce(pixels: np.ndarray, cam_src: PinholeCamera, cam_dst: PinholeCamera, datum: Datum = DATUM) -> np.ndarray:
    """Pixels of cam_src -> ground -> pixels of cam_dst."""
    p = np.atleast_2d(np.asarray(pixels, dtype=float))
    centers = np.repeat(cam_src.camera_center()[None, :], len(p), axis=0)
    hits = datum.intersect_rays(centers, cam_src.pixels_to_vectors(p))
    return cam_dst.points_to_pixels(hits)


def stereo_blob_scene(
    yaw_deg: float = 3.0,
    baseline: float = 40.0,
    seed: int = 7,
) -> Dict:
    """
    20 blobs on rows 20 px apart in image 1: 18 shared, one only in image 1,
    one only in image 2. Each row is its own epipolar band, so a tight
    epipolar threshold leaves exactly one candidate per point.

    Returns cameras, both images and the true positions of the shared blobs.
    """
    rng = np.random.default_rng(seed)
    rows = [60 + 20 * k for k in range(20)]
    xs = rng.integers(80, 431, size=20)
    amps = rng.uniform(0.7, 1.0, size=20)
    pos1 = np.column_stack([xs, rows]).astype(float)

    cam1 = nadir_camera()
    cam2 = nadir_camera(x=baseline, yaw_deg=yaw_deg)
    pos2 = bounce(pos1, cam1, cam2)

    only1, only2 = 5, 12
    shared: List[int] = [k for k in range(20) if k not in (only1, only2)]
    in1 = [k for k in range(20) if k != only2]
    in2 = [k for k in range(20) if k != only1]

    image1 = render_blobs((SIZE, SIZE), [tuple(pos1[k]) for k in in1], amplitudes=amps[in1])
    image2 = render_blobs((SIZE, SIZE), [tuple(pos2[k]) for k in in2], amplitudes=amps[in2])
    return {
        "cam1": cam1,
        "cam2": cam2,
        "image1": image1,
        "image2": image2,
        "shared1": pos1[shared],
        "shared2": pos2[shared],
    }


def textured_pair(dx: int = 12, dy: int = 7, seed: int = 3) -> Tuple[np.ndarray, np.ndarray]:
    """
    Two 512x512 crops of one blurred-noise texture; image-2 pixel (x, y)
    shows image-1 pixel (x + dx, y + dy).
    """
    rng = np.random.default_rng(seed)
    big = rng.normal(size=(SIZE + 64, SIZE + 64)).astype(np.float32)
    big = cv2.GaussianBlur(big, (0, 0), 2.0)
    return big[:SIZE, :SIZE].copy(), big[dy:dy + SIZE, dx:dx + SIZE].copy()
