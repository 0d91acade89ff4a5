from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np
import rasterio


_GEOTIFF_SUFFIXES = {".tif", ".tiff", ".gtiff"}


def load_image(path: str, nodata: Optional[float] = None) -> Tuple[np.ndarray, float]:
    """
    Read a single-channel image as float32.

    - GeoTIFFs go through rasterio (band 1); the dataset's nodata value is
      used unless `nodata` is given.
    - Anything else goes through cv2.imread in grayscale.
    Returns (image, nodata) where nodata is NaN when the image has none.
    """
    if not Path(path).exists():
        raise FileNotFoundError(f"Image not found: {path}")

    if Path(path).suffix.lower() in _GEOTIFF_SUFFIXES:
        with rasterio.open(path) as ds:
            band = ds.read(1).astype(np.float32)
            file_nodata = ds.nodata
        if nodata is None and file_nodata is not None:
            nodata = float(file_nodata)
    else:
        img = cv2.imread(os.fspath(path), cv2.IMREAD_GRAYSCALE)
        if img is None:
            raise RuntimeError(f"Cannot decode image: {path}")
        band = img.astype(np.float32)

    return band, float("nan") if nodata is None else float(nodata)


def nodata_mask(image: np.ndarray, nodata: float) -> np.ndarray:
    """True where a pixel is no-data (NaN pixels always are)."""
    mask = ~np.isfinite(image)
    if np.isfinite(nodata):
        mask |= image == nodata
    return mask


def masked_for_detection(image: np.ndarray, nodata: float) -> np.ndarray:
    """Dense float copy with no-data pixels zeroed."""
    out = np.array(image, dtype=np.float32, copy=True)
    out[nodata_mask(out, nodata)] = 0.0
    return out
