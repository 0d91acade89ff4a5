from __future__ import annotations

import argparse
import math
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from cameras.image_io import load_image
from cameras.transform import BBox, PixelTransform, compose
from common.errors import ConfigurationError, NoConsensusError
from common.geo import Datum
from common.logging_setup import configure_from_dict, get_logger
from common.types import CorrespondenceSet, points_to_array, sort_interest_points
from common.utils import LogProgress, Timer
from ip_detect.detect import detect_ip, points_per_tile
from ip_detect.detector import ScaleSpaceDetector
from ip_match.candidate import CandidateMatcher
from ip_match.config import cameras_from_config, datum_from_config, load_config
from ip_match.epipolar import EpipolarLinePointMatcher, mutual_consistency
from ip_match.match_file import read_binary_match_file, write_binary_match_file
from ip_match.ransac import RansacHomographyFitter, homography_fit
from ip_match.rough_homography import RoughHomographyEstimator
from ip_match.tri_alt_filter import TriangulationAltitudeFilter


log = get_logger("ip_match")

NAN = float("nan")
MAX_ALIGNMENT_DRIFT = 4.0


def detect_match_ip(
    image1: np.ndarray,
    image2: np.ndarray,
    nodata1: float = NAN,
    nodata2: float = NAN,
    *,
    detector: Optional[ScaleSpaceDetector] = None,
    ratio: float = 0.5,
) -> CorrespondenceSet:
    """Detect, describe and match by descriptor only (no geometry)."""
    ip1, ip2 = detect_ip(image1, image2, nodata1, nodata2, detector=detector)
    ip1, ip2 = sort_interest_points(ip1, ip2)
    with Timer(log, "Candidate matching"):
        matches = CandidateMatcher(ratio=ratio)(ip1, ip2)
    log.info("Candidate matches", extra={"extra": {"matches": len(matches)}})
    return matches


def homography_ip_matching(
    image1: np.ndarray,
    image2: np.ndarray,
    output: str,
    nodata1: float = NAN,
    nodata2: float = NAN,
    *,
    detector: Optional[ScaleSpaceDetector] = None,
    ratio: float = 0.5,
    fitter: Optional[RansacHomographyFitter] = None,
) -> bool:
    """
    Pure-homography mode: candidate matching then RANSAC. Writes the inliers
    to `output`. False when nothing survives.
    """
    matches = detect_match_ip(image1, image2, nodata1, nodata2, detector=detector, ratio=ratio)
    if len(matches) == 0:
        log.warning("No candidate matches", extra={"extra": {"output": output}})
        return False

    fitter = fitter or RansacHomographyFitter()
    try:
        H, inliers = fitter.fit(matches.points1(), matches.points2(), BBox.from_shape(np.shape(image1)))
    except NoConsensusError as e:
        log.warning("Homography RANSAC failed", extra={"extra": {"error": str(e), "matches": len(matches)}})
        return False

    final = matches.subset(inliers.tolist())
    log.info(
        "Homography matching",
        extra={"extra": {"inliers": len(final), "H": np.round(H, 6).tolist()}},
    )
    write_binary_match_file(output, final.ip1, final.ip2)
    return True


def ip_matching(
    cam1,
    cam2,
    image1: np.ndarray,
    image2: np.ndarray,
    datum: Datum,
    output: str,
    nodata1: float = NAN,
    nodata2: float = NAN,
    tx1: Optional[PixelTransform] = None,
    tx2: Optional[PixelTransform] = None,
    transform_to_original_coord: bool = True,
    *,
    detector: Optional[ScaleSpaceDetector] = None,
    ratio: float = 0.5,
    epipolar_threshold: Optional[float] = None,
    tri_filter: Optional[TriangulationAltitudeFilter] = None,
) -> bool:
    """
    Camera-aware mode: bidirectional epipolar matching, mutual consistency,
    triangulation/altitude filtering. `tx1`/`tx2` map each camera's original
    pixels to the frame of the image actually passed in.
    """
    tx1 = tx1 or PixelTransform.identity()
    tx2 = tx2 or PixelTransform.identity()

    ip1, ip2 = detect_ip(image1, image2, nodata1, nodata2, detector=detector)
    if not ip1 or not ip2:
        log.warning("No interest points", extra={"extra": {"left": len(ip1), "right": len(ip2)}})
        return False
    ip1, ip2 = sort_interest_points(ip1, ip2)

    if epipolar_threshold is None:
        h, w = np.shape(image1)[:2]
        epipolar_threshold = math.hypot(w, h) / 20.0
    matcher = EpipolarLinePointMatcher(ratio, epipolar_threshold, datum)

    with Timer(log, "Epipolar matching"):
        forward = matcher(ip1, ip2, cam1, cam2, tx1, tx2, progress=LogProgress(log, "Matching forward"))
        backward = matcher(ip2, ip1, cam2, cam1, tx2, tx1, progress=LogProgress(log, "Matching backward"))
    pairs = mutual_consistency(forward, backward)
    corr = CorrespondenceSet([ip1[i].copy() for i, _ in pairs], [ip2[j].copy() for _, j in pairs])
    log.info(
        "Epipolar matches",
        extra={"extra": {
            "forward": sum(m is not None for m in forward),
            "backward": sum(m is not None for m in backward),
            "consistent": len(corr),
        }},
    )
    if len(corr) == 0:
        return False

    tri_filter = tri_filter or TriangulationAltitudeFilter()
    try:
        inliers = tri_filter.filter(corr, cam1, cam2, datum, tx1, tx2)
    except NoConsensusError as e:
        log.warning("Triangulation/altitude filter failed", extra={"extra": {"error": str(e)}})
        return False
    final = corr.subset(inliers)

    if transform_to_original_coord:
        _to_original(final, tx1, tx2)

    write_binary_match_file(output, final.ip1, final.ip2)
    return True


def _to_original(corr: CorrespondenceSet, tx1: PixelTransform, tx2: PixelTransform) -> None:
    for points, tx in ((corr.ip1, tx1), (corr.ip2, tx2)):
        if not points or tx.is_identity:
            continue
        xy = tx.reverse(points_to_array(points))
        for p, (x, y) in zip(points, xy.tolist()):
            p.x, p.y = x, y
            p.ix, p.iy = int(round(x)), int(round(y))


def warp_to_reference(
    image: np.ndarray,
    H: np.ndarray,
    shape: tuple,
    nodata: float = NAN,
) -> np.ndarray:
    """
    Resample `image` into a (h, w) frame through H (image -> frame) with
    nearest-neighbour interpolation; pixels with no source become `nodata`.
    """
    h, w = int(shape[0]), int(shape[1])
    src = np.asarray(image, dtype=np.float32)
    warped = cv2.warpPerspective(src, H, (w, h), flags=cv2.INTER_NEAREST,
                                 borderMode=cv2.BORDER_CONSTANT, borderValue=0)
    covered = cv2.warpPerspective(np.ones(src.shape[:2], dtype=np.uint8), H, (w, h),
                                  flags=cv2.INTER_NEAREST, borderMode=cv2.BORDER_CONSTANT, borderValue=0)
    warped[covered == 0] = nodata
    return warped


def align_to_reference(
    image: np.ndarray,
    H: np.ndarray,
    nodata: float = NAN,
) -> Tuple[np.ndarray, PixelTransform]:
    """
    Warp `image` through H into the smallest raster that holds all of it.
    Returns the raster and the original -> raster transform (H followed by
    the shift that moves the warped box to the origin).
    """
    tx = PixelTransform.homography(H)
    raster_box = tx.forward_bbox(BBox.from_shape(np.shape(image)))
    if raster_box.empty:
        raise ConfigurationError("Rough homography collapses the second image")
    tx = compose(PixelTransform.translation(-raster_box.x0, -raster_box.y0), tx)
    aligned = warp_to_reference(image, tx.matrix, (raster_box.height, raster_box.width), nodata)
    return aligned, tx


def ip_matching_w_alignment(
    cam1,
    cam2,
    image1: np.ndarray,
    image2: np.ndarray,
    datum: Datum,
    output: str,
    nodata1: float = NAN,
    nodata2: float = NAN,
    *,
    detector: Optional[ScaleSpaceDetector] = None,
    ratio: float = 0.5,
    epipolar_threshold: Optional[float] = None,
    tri_filter: Optional[TriangulationAltitudeFilter] = None,
    estimator: Optional[RoughHomographyEstimator] = None,
) -> bool:
    """
    Pre-align image 2 onto image 1 with the camera-derived rough homography,
    match, then check the matches agree with that homography.
    Raises ConfigurationError when the images cannot overlap.
    """
    bbox1 = BBox.from_shape(np.shape(image1))
    bbox2 = BBox.from_shape(np.shape(image2))
    estimator = estimator or RoughHomographyEstimator()
    H = estimator.estimate(cam1, cam2, bbox1, bbox2, datum)

    if np.isfinite(nodata2):
        fill = float(nodata2)
    else:
        fill = NAN
    with Timer(log, "Aligning right image"):
        aligned, tx2 = align_to_reference(image2, H, fill)
    log.debug("Aligned raster", extra={"extra": {"shape": list(aligned.shape)}})

    ok = ip_matching(
        cam1, cam2, image1, aligned, datum, output, nodata1, fill,
        PixelTransform.identity(), tx2, True,
        detector=detector, ratio=ratio, epipolar_threshold=epipolar_threshold,
        tri_filter=tri_filter,
    )
    if not ok:
        return False

    ip1, ip2 = read_binary_match_file(output)
    try:
        H_ip, _ = homography_fit(points_to_array(ip2), points_to_array(ip1), bbox1)
    except NoConsensusError as e:
        log.warning("Alignment check failed", extra={"extra": {"error": str(e)}})
        return False

    drift = float(np.sum(np.abs(H[:2, :2] - H_ip[:2, :2])))
    if drift > MAX_ALIGNMENT_DRIFT:
        log.error(
            "Matched points disagree with the rough homography",
            extra={"extra": {"drift": drift, "rough": H[:2, :2].tolist(), "matched": H_ip[:2, :2].tolist()}},
        )
        return False
    log.info("Alignment check passed", extra={"extra": {"drift": round(drift, 6), "matches": len(ip1)}})
    return True


# -----------------------------
# CLI
# -----------------------------

def _detector_from_config(P: Dict, image: np.ndarray, max_points: Optional[int]) -> ScaleSpaceDetector:
    D = P["detector"]
    budget = max_points if max_points is not None else D.get("max_points")
    if budget is None:
        h, w = np.shape(image)[:2]
        budget = points_per_tile(w, h)
    return ScaleSpaceDetector(
        max_points=int(budget),
        num_scales=int(D.get("num_scales", 8)),
        threshold=float(D.get("threshold", 0.0)),
    )


def main() -> None:
    ap = argparse.ArgumentParser(description="Stereo interest point detection and matching")
    ap.add_argument("left", help="Left image (GeoTIFF or any OpenCV-readable image)")
    ap.add_argument("right", help="Right image")
    ap.add_argument("output", help="Output binary match file")
    ap.add_argument("--config", default="config/stereo_ip.yaml")
    ap.add_argument("--mode", choices=("homography", "epipolar", "aligned"), default="homography")
    ap.add_argument("--left-nodata", type=float, default=None, help="Override left no-data value")
    ap.add_argument("--right-nodata", type=float, default=None, help="Override right no-data value")
    ap.add_argument("--max-points", type=int, default=None, help="Override detector point budget")
    ap.add_argument("--seed", type=int, default=None, help="RANSAC seed")
    args = ap.parse_args()

    try:
        P = load_config(args.config)
        configure_from_dict(P.get("logging"))
    except (ConfigurationError, ValueError) as e:
        log.error("Configuration error", extra={"extra": {"error": str(e), "config": args.config}})
        raise SystemExit(2)

    image1, nodata1 = load_image(args.left, args.left_nodata)
    image2, nodata2 = load_image(args.right, args.right_nodata)
    detector = _detector_from_config(P, image1, args.max_points)
    M = P["matching"]
    R = P["ransac"]
    F = P["filter"]
    seed = args.seed if args.seed is not None else R.get("seed")

    log.info(
        "Stereo IP matching started",
        extra={"extra": {"mode": args.mode, "left": args.left, "right": args.right, "output": args.output}},
    )
    try:
        if args.mode == "homography":
            fitter = RansacHomographyFitter(iterations=int(R.get("iterations", 100)), seed=seed)
            ok = homography_ip_matching(
                image1, image2, args.output, nodata1, nodata2,
                detector=detector, ratio=float(M.get("ratio", 0.5)), fitter=fitter,
            )
        else:
            cam1, cam2 = cameras_from_config(P)
            datum = datum_from_config(P)
            tri_filter = TriangulationAltitudeFilter(
                min_samples=int(F.get("min_samples", 3)), min_inliers=int(F.get("min_inliers", 3)),
            )
            opts = dict(
                detector=detector,
                ratio=float(M.get("ratio", 0.5)),
                epipolar_threshold=M.get("epipolar_threshold"),
                tri_filter=tri_filter,
            )
            if args.mode == "epipolar":
                ok = ip_matching(cam1, cam2, image1, image2, datum, args.output, nodata1, nodata2, **opts)
            else:
                ok = ip_matching_w_alignment(
                    cam1, cam2, image1, image2, datum, args.output, nodata1, nodata2,
                    estimator=RoughHomographyEstimator(seed=seed), **opts,
                )
    except ConfigurationError as e:
        log.error("Configuration error", extra={"extra": {"error": str(e)}})
        raise SystemExit(2)

    if not ok:
        log.warning("No matches written", extra={"extra": {"output": args.output}})
        raise SystemExit(1)


if __name__ == "__main__":
    main()
