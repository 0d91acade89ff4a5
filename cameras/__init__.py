"""
Camera-side collaborators

- PinholeCamera: pixel <-> ray projection in a body-fixed frame
- PixelTransform / BBox: processing-frame <-> original-frame mapping
- load_image: GeoTIFF (rasterio) or raster (OpenCV) reader with no-data
"""
from .image_io import load_image
from .pinhole import PinholeCamera
from .transform import BBox, PixelTransform, compose

__all__ = ["BBox", "PinholeCamera", "PixelTransform", "compose", "load_image"]
