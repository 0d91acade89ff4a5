from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np

from cameras.image_io import masked_for_detection, nodata_mask
from common.logging_setup import get_logger
from common.types import InterestPoint
from common.utils import clamp
from ip_detect.descriptor import SGradDescriptor
from ip_detect.detector import ScaleSpaceDetector


log = get_logger("ip_detect")

TILE_PX = 1024
POINTS_PER_TILE = 5000.0


def points_per_tile(width: int, height: int) -> int:
    """Point budget scaled to the image area, clamped to [50, 5000]."""
    number_boxes = (width / float(TILE_PX)) * (height / float(TILE_PX))
    if number_boxes <= 0:
        return 50
    return int(clamp(POINTS_PER_TILE / number_boxes, 50, 5000))


def remove_ip_near_nodata(
    image: np.ndarray,
    nodata: float,
    points: List[InterestPoint],
) -> List[InterestPoint]:
    """
    Drop points on the 1-px image border or with any no-data pixel in their
    3x3 neighbourhood. One compaction pass; the input list is untouched.
    """
    if not points:
        return []
    bad = nodata_mask(np.asarray(image), nodata)
    H, W = bad.shape
    # dilate by one pixel so a 3x3 test becomes a single lookup
    near = bad.copy()
    near[1:, :] |= bad[:-1, :]
    near[:-1, :] |= bad[1:, :]
    near2 = near.copy()
    near2[:, 1:] |= near[:, :-1]
    near2[:, :-1] |= near[:, 1:]

    keep = [
        1 <= p.ix < W - 1 and 1 <= p.iy < H - 1 and not near2[p.iy, p.ix]
        for p in points
    ]
    out = [p for p, k in zip(points, keep) if k]
    log.debug(
        "Removed interest points near nodata",
        extra={"extra": {"removed": len(points) - len(out), "nodata": nodata}},
    )
    return out


def _detect_one(
    image: np.ndarray,
    nodata: float,
    detector: ScaleSpaceDetector,
    descriptor: SGradDescriptor,
) -> List[InterestPoint]:
    has_nodata = np.isfinite(nodata) or not np.all(np.isfinite(image))
    work = masked_for_detection(image, nodata) if has_nodata else image
    points = detector.process_image(work)
    if has_nodata:
        points = remove_ip_near_nodata(image, nodata, points)
    return descriptor(work, points)


def detect_ip(
    image1: np.ndarray,
    image2: np.ndarray,
    nodata1: float = float("nan"),
    nodata2: float = float("nan"),
    *,
    detector: Optional[ScaleSpaceDetector] = None,
    descriptor: Optional[SGradDescriptor] = None,
    parallel: bool = True,
) -> Tuple[List[InterestPoint], List[InterestPoint]]:
    """
    Detect and describe interest points in both images of a pair.

    The budget defaults to points_per_tile() of image 1. The two images are
    independent, so detection runs on two worker threads when `parallel`.
    """
    if detector is None:
        h, w = np.asarray(image1).shape[:2]
        budget = points_per_tile(w, h)
        log.debug("IP budget per 1024^2 tile", extra={"extra": {"points_per_tile": budget}})
        detector = ScaleSpaceDetector(max_points=budget)
    descriptor = descriptor or SGradDescriptor()

    if parallel:
        with ThreadPoolExecutor(max_workers=2) as pool:
            f1 = pool.submit(_detect_one, image1, nodata1, detector, descriptor)
            f2 = pool.submit(_detect_one, image2, nodata2, detector, descriptor)
            ip1, ip2 = f1.result(), f2.result()
    else:
        ip1 = _detect_one(image1, nodata1, detector, descriptor)
        ip2 = _detect_one(image2, nodata2, detector, descriptor)

    log.info("Found interest points", extra={"extra": {"left": len(ip1), "right": len(ip2)}})
    return ip1, ip2
