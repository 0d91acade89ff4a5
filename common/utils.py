from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np


ProgressFn = Callable[[float], None]


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))


def to_numpy_3x3(x) -> np.ndarray:
    """Ensure input is a 3x3 float64 numpy array (copy if necessary)."""
    a = np.asarray(x, dtype=float)
    if a.shape != (3, 3):
        raise ValueError("Expected 3x3")
    return a.copy()


def no_progress(_fraction: float) -> None:
    """Default progress callback."""
    return None


@dataclass
class LogProgress:
    """
    Progress callback that logs at coarse steps (every `step` of completion).

    Usage:
        cb = LogProgress(log, "Forward")
        for i in range(n):
            ...
            cb((i + 1) / n)
    """
    logger: logging.Logger
    label: str
    step: float = 0.25
    _next: float = field(default=0.0, init=False)

    def __call__(self, fraction: float) -> None:
        fraction = clamp(fraction, 0.0, 1.0)
        if fraction + 1e-12 < self._next:
            return
        self.logger.debug(f"{self.label}: {int(round(fraction * 100))}%")
        self._next = fraction + self.step


class Timer:
    """
    Context manager logging elapsed wall time at DEBUG.

        with Timer(log, "Creating integral image"):
            ...
    """

    def __init__(self, logger: logging.Logger, label: str, level: int = logging.DEBUG):
        self.logger = logger
        self.label = label
        self.level = level
        self.elapsed_ms: Optional[float] = None
        self._t0 = 0.0

    def __enter__(self) -> "Timer":
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed_ms = (time.perf_counter() - self._t0) * 1e3
        self.logger.log(
            self.level,
            f"{self.label} done",
            extra={"extra": {"elapsed_ms": round(self.elapsed_ms, 3)}},
        )
