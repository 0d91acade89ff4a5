from __future__ import annotations

import copy
from typing import Any, Dict, Optional

import yaml

from cameras.pinhole import PinholeCamera
from common.errors import ConfigurationError
from common.geo import Datum


DEFAULTS: Dict[str, Any] = {
    "logging": {"level": "INFO", "stream": "stderr"},
    "detector": {"num_scales": 8, "threshold": 0.0, "max_points": None},
    "matching": {"ratio": 0.5, "epipolar_threshold": None},
    "ransac": {"iterations": 100, "seed": None},
    "filter": {"min_samples": 3, "min_inliers": 3},
    "datum": {"name": "WGS84"},
    "cameras": {},
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def _load_yaml(path: str) -> Dict:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """YAML file merged onto DEFAULTS; no path gives the defaults."""
    if path is None:
        return copy.deepcopy(DEFAULTS)
    P = _load_yaml(path)
    if not isinstance(P, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return _merge(DEFAULTS, P)


def datum_from_config(P: Dict[str, Any]) -> Datum:
    """`datum: {name: WGS84}` or `datum: {semi_major: .., semi_minor: ..}`."""
    D = P.get("datum") or {}
    try:
        if "semi_major" in D:
            a = float(D["semi_major"])
            return Datum(str(D.get("name", "custom")), a, float(D.get("semi_minor", a)))
        return Datum.named(str(D.get("name", "WGS84")))
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def cameras_from_config(P: Dict[str, Any]) -> tuple[PinholeCamera, PinholeCamera]:
    cams = P.get("cameras") or {}
    missing = [k for k in ("left", "right") if k not in cams]
    if missing:
        raise ConfigurationError(f"cameras section missing: {', '.join(missing)}")
    try:
        return PinholeCamera.from_dict(cams["left"]), PinholeCamera.from_dict(cams["right"])
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"bad camera definition: {e}") from e
