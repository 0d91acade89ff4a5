from __future__ import annotations
"""
Binary match files.

Layout (little endian):
    u64 n1, u64 n2
    n1 records for image 1, then n2 records for image 2, each:
        f32 x, f32 y, i32 ix, i32 iy, f32 orientation, f32 scale,
        f32 interest, u8 polarity, u32 octave, u32 scale_lvl,
        u64 desc_len, f32[desc_len] descriptor
"""

import struct
from typing import BinaryIO, List, Sequence, Tuple

import numpy as np

from common.logging_setup import get_logger
from common.types import InterestPoint


log = get_logger("ip_match.match_file")

_COUNTS = struct.Struct("<QQ")
_RECORD = struct.Struct("<ffiifffBIIQ")
_MAX_DESC_LEN = 1 << 20


def _write_point(f: BinaryIO, p: InterestPoint) -> None:
    desc = np.ascontiguousarray(p.descriptor, dtype="<f4")
    f.write(_RECORD.pack(
        p.x, p.y, p.ix, p.iy, p.orientation, p.scale, p.interest,
        1 if p.polarity else 0, p.octave, p.scale_lvl, desc.size,
    ))
    f.write(desc.tobytes())


def _read_exact(f: BinaryIO, n: int) -> bytes:
    data = f.read(n)
    if len(data) != n:
        raise ValueError("match file is truncated")
    return data


def _read_point(f: BinaryIO) -> InterestPoint:
    (x, y, ix, iy, orientation, scale, interest,
     polarity, octave, scale_lvl, desc_len) = _RECORD.unpack(_read_exact(f, _RECORD.size))
    if desc_len > _MAX_DESC_LEN:
        raise ValueError(f"implausible descriptor length {desc_len}")
    desc = np.frombuffer(_read_exact(f, 4 * desc_len), dtype="<f4").astype(np.float32)
    return InterestPoint(
        x=x, y=y, ix=ix, iy=iy, orientation=orientation, scale=scale,
        interest=interest, polarity=bool(polarity), octave=octave,
        scale_lvl=scale_lvl, descriptor=desc,
    )


def write_binary_match_file(
    path: str,
    ip1: Sequence[InterestPoint],
    ip2: Sequence[InterestPoint],
) -> None:
    with open(path, "wb") as f:
        f.write(_COUNTS.pack(len(ip1), len(ip2)))
        for p in ip1:
            _write_point(f, p)
        for p in ip2:
            _write_point(f, p)
    log.info("Wrote match file", extra={"extra": {"path": str(path), "matches": len(ip1)}})


def read_binary_match_file(path: str) -> Tuple[List[InterestPoint], List[InterestPoint]]:
    """Raises ValueError on truncated or trailing-garbage files."""
    with open(path, "rb") as f:
        n1, n2 = _COUNTS.unpack(_read_exact(f, _COUNTS.size))
        ip1 = [_read_point(f) for _ in range(n1)]
        ip2 = [_read_point(f) for _ in range(n2)]
        if f.read(1):
            raise ValueError("match file has trailing data")
    return ip1, ip2
