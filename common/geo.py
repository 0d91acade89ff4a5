from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import math
import numpy as np


# --- WGS84 constants ---
_WGS84_A = 6378137.0              # semi-major axis (m)
_WGS84_F = 1.0 / 298.257223563    # flattening
_WGS84_B = _WGS84_A * (1.0 - _WGS84_F)

# Spherical bodies (IAU mean radii, m)
_MOON_R = 1737400.0
_MARS_R = 3396190.0


@dataclass(frozen=True)
class Datum:
    """
    Ellipsoid of revolution used as the reference surface for ray
    intersections and altitudes. Cartesian frame is body-fixed (ECEF-like).
    """
    name: str
    semi_major: float
    semi_minor: float

    def __post_init__(self) -> None:
        if self.semi_major <= 0 or self.semi_minor <= 0:
            raise ValueError("datum axes must be > 0")

    # -------------------------
    # Constructors
    # -------------------------
    @classmethod
    def named(cls, name: str) -> "Datum":
        key = name.strip().upper()
        table: Dict[str, Tuple[float, float]] = {
            "WGS84": (_WGS84_A, _WGS84_B),
            "WGS_1984": (_WGS84_A, _WGS84_B),
            "D_MOON": (_MOON_R, _MOON_R),
            "MOON": (_MOON_R, _MOON_R),
            "D_MARS": (_MARS_R, _MARS_R),
            "MARS": (_MARS_R, _MARS_R),
        }
        if key not in table:
            raise ValueError(f"Unknown datum: {name}")
        a, b = table[key]
        return cls(name=key, semi_major=a, semi_minor=b)

    @classmethod
    def sphere(cls, radius: float, name: str = "sphere") -> "Datum":
        return cls(name=name, semi_major=float(radius), semi_minor=float(radius))

    @property
    def e2(self) -> float:
        """First eccentricity squared."""
        a, b = self.semi_major, self.semi_minor
        return (a * a - b * b) / (a * a)

    # -------------------------
    # Geodetic <-> cartesian
    # -------------------------
    def geodetic_to_cartesian(self, lat: float, lon: float, alt_m: float) -> np.ndarray:
        """Geodetic (deg, deg, m) to body-fixed cartesian (x,y,z) meters."""
        phi = math.radians(lat)
        lam = math.radians(lon)
        sinp = math.sin(phi)
        cosp = math.cos(phi)
        N = self.semi_major / math.sqrt(1.0 - self.e2 * sinp * sinp)
        x = (N + alt_m) * cosp * math.cos(lam)
        y = (N + alt_m) * cosp * math.sin(lam)
        z = (N * (1.0 - self.e2) + alt_m) * sinp
        return np.array([x, y, z], dtype=float)

    def cartesian_to_geodetic(self, xyz: np.ndarray) -> np.ndarray:
        """
        Cartesian (..., 3) to geodetic (..., 3) as (lat_deg, lon_deg, alt_m).
        Bowring's method; height via h = p cos(lat) + z sin(lat) - a^2/N,
        which stays finite at the poles.
        """
        pts = np.asarray(xyz, dtype=float)
        x, y, z = pts[..., 0], pts[..., 1], pts[..., 2]
        a, b = self.semi_major, self.semi_minor
        e2 = self.e2
        ep2 = (a * a - b * b) / (b * b)

        lon = np.arctan2(y, x)
        p = np.hypot(x, y)
        th = np.arctan2(a * z, b * p)
        lat = np.arctan2(z + ep2 * b * np.sin(th) ** 3, p - e2 * a * np.cos(th) ** 3)
        sinp = np.sin(lat)
        N = a / np.sqrt(1.0 - e2 * sinp * sinp)
        alt = p * np.cos(lat) + z * sinp - (a * a) / N
        return np.stack([np.degrees(lat), np.degrees(lon), alt], axis=-1)

    def altitude(self, xyz: np.ndarray) -> np.ndarray:
        """Height above the ellipsoid for (..., 3) cartesian points."""
        return self.cartesian_to_geodetic(xyz)[..., 2]

    # -------------------------
    # Ray intersection
    # -------------------------
    def intersect_rays(self, origins: np.ndarray, directions: np.ndarray, alt_m: float = 0.0) -> np.ndarray:
        """
        Nearest forward intersection of rays with the ellipsoid inflated by
        `alt_m`. Inputs (N,3); output (N,3) with NaN rows for misses.
        """
        o = np.atleast_2d(np.asarray(origins, dtype=float))
        d = np.atleast_2d(np.asarray(directions, dtype=float))
        o, d = np.broadcast_arrays(o, d)
        inv_axes = 1.0 / np.array(
            [self.semi_major + alt_m, self.semi_major + alt_m, self.semi_minor + alt_m], dtype=float
        )
        # Scale into unit-sphere space
        os_ = o * inv_axes
        ds = d * inv_axes
        A = np.sum(ds * ds, axis=1)
        B = 2.0 * np.sum(os_ * ds, axis=1)
        C = np.sum(os_ * os_, axis=1) - 1.0
        disc = B * B - 4.0 * A * C

        out = np.full(o.shape, np.nan, dtype=float)
        ok = (disc >= 0.0) & (A > 0.0)
        if not np.any(ok):
            return out
        sq = np.sqrt(np.where(ok, disc, 0.0))
        safe_a = np.where(ok, A, 1.0)
        t0 = (-B - sq) / (2.0 * safe_a)
        t1 = (-B + sq) / (2.0 * safe_a)
        # nearest non-negative root
        t = np.where(t0 >= 0.0, t0, t1)
        ok &= t >= 0.0
        out[ok] = o[ok] + t[ok, None] * d[ok]
        return out

    def intersect_ray(self, origin: np.ndarray, direction: np.ndarray, alt_m: float = 0.0) -> Optional[np.ndarray]:
        """Single-ray variant; None when the ray misses."""
        hit = self.intersect_rays(np.asarray(origin)[None, :], np.asarray(direction)[None, :], alt_m)[0]
        if not np.all(np.isfinite(hit)):
            return None
        return hit


WGS84 = Datum.named("WGS84")
