"""
Shared building blocks: JSON logging, data types, error taxonomy,
reference ellipsoids (datums) and small utilities.
"""
from .errors import ConfigurationError, NoConsensusError, StereoIPError
from .geo import Datum, WGS84
from .types import CorrespondenceSet, InterestPoint

__all__ = [
    "ConfigurationError",
    "CorrespondenceSet",
    "Datum",
    "InterestPoint",
    "NoConsensusError",
    "StereoIPError",
    "WGS84",
]
