"""Band decoder: GeoTIFF bytes → reflectance ``BandRaster`` objects.

Two variants:

- ``decode_band``: one band per request (Planetary Computer crops).
- ``decode_reflectance_cube``: one request carrying several bands per
  pixel (Sentinel Hub process API), at least four samples per pixel.

Both apply the same scaling: samples above 2 are raw digital numbers
and are divided by 10,000; negatives clamp to 0.  Nodata samples become
NaN and are rejected later by the index computer.
"""

from __future__ import annotations

import logging

import numpy as np

from vegetation_ingest.core.constants import RAW_DN_THRESHOLD, REFLECTANCE_SCALE
from vegetation_ingest.core.exceptions import (
    BandDimensionMismatchError,
    RasterDecodeError,
    ReflectanceCubeError,
)
from vegetation_ingest.models.imagery import BandRaster

logger = logging.getLogger(__name__)

CUBE_BAND_COUNT = 4


def scale_reflectance(raw: np.ndarray) -> np.ndarray:
    """Convert raw samples to reflectance (``float64``, NaN preserved)."""
    raw = np.asarray(raw, dtype=np.float64)
    scaled = np.where(raw > RAW_DN_THRESHOLD, raw / REFLECTANCE_SCALE, raw)
    return np.maximum(scaled, 0.0)


def _read_bands(data: bytes) -> np.ndarray:
    """Read every band of an in-memory GeoTIFF as ``(count, h, w)`` floats."""
    if not data:
        msg = "Empty raster payload"
        raise RasterDecodeError(msg)

    from rasterio.errors import RasterioError
    from rasterio.io import MemoryFile

    try:
        with MemoryFile(data) as memfile, memfile.open() as src:
            masked = src.read(masked=True)
    except RasterioError as exc:
        msg = f"Cannot decode GeoTIFF ({len(data)} bytes): {exc}"
        raise RasterDecodeError(msg) from exc

    return np.ma.filled(masked.astype(np.float64), np.nan)


def decode_band(data: bytes) -> BandRaster:
    """Decode the first band of a GeoTIFF into a reflectance raster.

    Raises:
        RasterDecodeError: If *data* is not a readable raster.
    """
    bands = _read_bands(data)
    _count, height, width = bands.shape
    logger.debug("Decoded band | width=%d | height=%d | bytes=%d", width, height, len(data))
    return BandRaster(width=width, height=height, reflectance=scale_reflectance(bands[0]).ravel())


def decode_reflectance_cube(data: bytes, bands: int = CUBE_BAND_COUNT) -> list[BandRaster]:
    """Decode a multi-band reflectance cube into one raster per band.

    Args:
        data: GeoTIFF bytes holding at least *bands* samples per pixel.
        bands: Number of bands to return, in file order.

    Raises:
        RasterDecodeError: If *data* is not a readable raster.
        ReflectanceCubeError: If the cube has fewer than *bands* samples
            per pixel.
    """
    cube = _read_bands(data)
    count, height, width = cube.shape
    if count < bands:
        msg = f"Reflectance cube has {count} samples per pixel, expected >= {bands}"
        raise ReflectanceCubeError(msg)

    logger.debug(
        "Decoded reflectance cube | width=%d | height=%d | samples_per_pixel=%d",
        width,
        height,
        count,
    )
    return [
        BandRaster(width=width, height=height, reflectance=scale_reflectance(cube[b]).ravel())
        for b in range(bands)
    ]


def ensure_same_shape(*rasters: BandRaster | None) -> None:
    """Raise ``BandDimensionMismatchError`` unless all rasters share a shape.

    ``None`` entries (optional bands that were not fetched) are ignored.
    """
    shapes = {(r.width, r.height) for r in rasters if r is not None}
    if len(shapes) > 1:
        msg = f"Band dimensions differ: {sorted(shapes)}"
        raise BandDimensionMismatchError(msg)
