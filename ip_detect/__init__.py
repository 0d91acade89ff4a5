"""
Interest point detection

- ScaleSpaceDetector: box-LoG blob detector over an integral image
- SGradDescriptor: 64-D gradient descriptor
- detect_ip: detect + no-data filtering + descriptors for an image pair
"""
from .descriptor import SGradDescriptor
from .detect import detect_ip, points_per_tile, remove_ip_near_nodata
from .detector import ScaleSpaceDetector, detect_interest_points

__all__ = [
    "SGradDescriptor",
    "ScaleSpaceDetector",
    "detect_interest_points",
    "detect_ip",
    "points_per_tile",
    "remove_ip_near_nodata",
]
