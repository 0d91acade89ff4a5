"""
Interest point matching

- CandidateMatcher: descriptor-only L2 ratio matching
- EpipolarLinePointMatcher: camera/datum constrained matching
- RansacHomographyFitter / RoughHomographyEstimator: homography fitting
- TriangulationAltitudeFilter: triangulation error + altitude outlier rejection
- pipeline: end-to-end matching entry points and CLI
"""
from .candidate import CandidateMatcher, remove_duplicates
from .epipolar import EpipolarLinePointMatcher, mutual_consistency
from .match_file import read_binary_match_file, write_binary_match_file
from .ransac import RansacHomographyFitter, homography_fit
from .rough_homography import RoughHomographyEstimator
from .tri_alt_filter import TriangulationAltitudeFilter

__all__ = [
    "CandidateMatcher",
    "EpipolarLinePointMatcher",
    "RansacHomographyFitter",
    "RoughHomographyEstimator",
    "TriangulationAltitudeFilter",
    "homography_fit",
    "mutual_consistency",
    "read_binary_match_file",
    "remove_duplicates",
    "write_binary_match_file",
]
