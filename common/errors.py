from __future__ import annotations
"""
Error taxonomy shared by detection, matching and filtering.

- ConfigurationError: fatal; the inputs or settings cannot work (e.g. the
  images do not overlap, a threshold is non-positive). Raised immediately.
- NoConsensusError: recoverable at the image-pair level; RANSAC or the
  triangulation/altitude filter found no cluster with enough support.
  Batch callers log it and move on to the next pair.

Empty inputs are not errors: they short-circuit to empty results.
"""


class StereoIPError(Exception):
    """Base class for errors raised by this project."""


class ConfigurationError(StereoIPError, ValueError):
    """Conflicting, missing or invalid geometric inputs or settings."""


class NoConsensusError(StereoIPError, RuntimeError):
    """No model or cluster met the minimum support requirement."""
