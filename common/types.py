from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np


def _empty_descriptor() -> np.ndarray:
    return np.zeros(0, dtype=np.float32)


@dataclass(slots=True)
class InterestPoint:
    """
    A detected salient point.

    Attributes:
        x, y: sub-pixel location (pixels).
        ix, iy: integer pixel location; authoritative for pixel-based filters.
        scale: equivalent Gaussian sigma of the detection level.
        orientation: radians; 0 when not computed.
        interest: detector response; the sign is the blob polarity.
        polarity: True for bright-on-dark blobs (interest > 0).
        octave, scale_lvl: detector bookkeeping, persisted in match files.
        descriptor: float32 vector attached by a descriptor assigner.
    """
    x: float
    y: float
    ix: Optional[int] = None
    iy: Optional[int] = None
    scale: float = 1.0
    orientation: float = 0.0
    interest: float = 0.0
    polarity: bool = False
    octave: int = 0
    scale_lvl: int = 0
    descriptor: np.ndarray = field(default_factory=_empty_descriptor, repr=False)

    def __post_init__(self) -> None:
        self.x = float(self.x)
        self.y = float(self.y)
        self.ix = int(round(self.x)) if self.ix is None else int(self.ix)
        self.iy = int(round(self.y)) if self.iy is None else int(self.iy)
        self.descriptor = np.asarray(self.descriptor, dtype=np.float32).ravel()

    @property
    def xy(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def copy(self) -> "InterestPoint":
        return InterestPoint(
            x=self.x, y=self.y, ix=self.ix, iy=self.iy,
            scale=self.scale, orientation=self.orientation,
            interest=self.interest, polarity=self.polarity,
            octave=self.octave, scale_lvl=self.scale_lvl,
            descriptor=self.descriptor.copy(),
        )


InterestPointList = List[InterestPoint]


def points_to_array(points: Sequence[InterestPoint]) -> np.ndarray:
    """(N, 2) float64 array of sub-pixel locations."""
    if not points:
        return np.zeros((0, 2), dtype=float)
    return np.array([[p.x, p.y] for p in points], dtype=float)


def descriptors_to_array(points: Sequence[InterestPoint]) -> np.ndarray:
    """(N, D) float32 descriptor matrix; all descriptors must share a length."""
    if not points:
        return np.zeros((0, 0), dtype=np.float32)
    lengths = {p.descriptor.size for p in points}
    if len(lengths) != 1:
        raise ValueError(f"descriptor lengths differ: {sorted(lengths)}")
    return np.vstack([p.descriptor for p in points]).astype(np.float32, copy=False)


def sort_interest_points(
    ip1: Iterable[InterestPoint],
    ip2: Iterable[InterestPoint],
) -> Tuple[List[InterestPoint], List[InterestPoint]]:
    """
    Copy both lists into randomly indexable, reproducibly ordered lists
    (descending |interest|, then row-major position).
    """
    def key(p: InterestPoint):
        return (-abs(p.interest), p.y, p.x)

    return sorted((p.copy() for p in ip1), key=key), sorted((p.copy() for p in ip2), key=key)


@dataclass(slots=True)
class CorrespondenceSet:
    """
    Two index-aligned point sequences: ip1[i] corresponds to ip2[i].
    This is the unit written to and read from match files.
    """
    ip1: List[InterestPoint] = field(default_factory=list)
    ip2: List[InterestPoint] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.ip1 = list(self.ip1)
        self.ip2 = list(self.ip2)
        if len(self.ip1) != len(self.ip2):
            raise ValueError(f"correspondence lengths differ: {len(self.ip1)} != {len(self.ip2)}")

    def __len__(self) -> int:
        return len(self.ip1)

    def subset(self, indices: Iterable[int]) -> "CorrespondenceSet":
        idx = list(indices)
        return CorrespondenceSet([self.ip1[i].copy() for i in idx], [self.ip2[i].copy() for i in idx])

    def points1(self) -> np.ndarray:
        return points_to_array(self.ip1)

    def points2(self) -> np.ndarray:
        return points_to_array(self.ip2)
