from __future__ import annotations
"""
Descriptor-only candidate matching (no geometry).

- KNN (k=2) L2 matcher + ratio test
- remove_duplicates for repeated (left, right) location pairs
"""

from typing import List, Sequence, Tuple

import cv2
import numpy as np

from common.types import CorrespondenceSet, InterestPoint, descriptors_to_array


def match_l2_knn_ratio(
    des1: np.ndarray,
    des2: np.ndarray,
    *,
    ratio: float = 0.5,
) -> List[Tuple[int, int]]:
    """
    KNN (k=2) + ratio test with L2 distance. Returns (query, train) index pairs.
    A lone neighbour (train set of size 1) is accepted outright.
    """
    if des1 is None or des2 is None or len(des1) == 0 or len(des2) == 0:
        return []
    bf = cv2.BFMatcher(cv2.NORM_L2, crossCheck=False)
    knn = bf.knnMatch(np.float32(des1), np.float32(des2), k=2)
    good: List[Tuple[int, int]] = []
    for pair in knn:
        if not pair:
            continue
        if len(pair) == 1:
            good.append((pair[0].queryIdx, pair[0].trainIdx))
            continue
        m, n = pair
        if m.distance < ratio * n.distance:
            good.append((m.queryIdx, m.trainIdx))
    return good


def remove_duplicates(matches: CorrespondenceSet) -> CorrespondenceSet:
    """Keep the first occurrence of each (x1, y1, x2, y2) location pair."""
    seen = set()
    keep: List[int] = []
    for i, (a, b) in enumerate(zip(matches.ip1, matches.ip2)):
        key = (a.x, a.y, b.x, b.y)
        if key in seen:
            continue
        seen.add(key)
        keep.append(i)
    if len(keep) == len(matches):
        return matches
    return matches.subset(keep)


class CandidateMatcher:
    """Baseline nearest-neighbour matcher over descriptor vectors."""

    def __init__(self, ratio: float = 0.5):
        self.ratio = float(ratio)

    def __call__(self, ip1: Sequence[InterestPoint], ip2: Sequence[InterestPoint]) -> CorrespondenceSet:
        if not ip1 or not ip2:
            return CorrespondenceSet()
        pairs = match_l2_knn_ratio(descriptors_to_array(ip1), descriptors_to_array(ip2), ratio=self.ratio)
        matched = CorrespondenceSet([ip1[i].copy() for i, _ in pairs], [ip2[j].copy() for _, j in pairs])
        return remove_duplicates(matched)
