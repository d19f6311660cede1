"""Shared pytest fixtures for the vegetation ingest test suite."""

from __future__ import annotations

from datetime import UTC, date, datetime

import numpy as np
import pytest

from vegetation_ingest.models.imagery import BandRaster, BandSet, Polygon, Scene
from vegetation_ingest.models.request import NormalizedIngestRequest, ScenePolicy

# ---------------------------------------------------------------------------
# Sample geometry
# ---------------------------------------------------------------------------

# ~1.1 km x 0.8 km block of orchards near Yakima, WA.
SAMPLE_BBOX = (-120.51, 46.60, -120.50, 46.61)

SAMPLE_RING = (
    (-120.508, 46.602),
    (-120.502, 46.602),
    (-120.502, 46.608),
    (-120.508, 46.608),
    (-120.508, 46.602),
)


def make_geotiff(bands: np.ndarray, *, dtype: str = "uint16", nodata: float | None = None) -> bytes:
    """Build GeoTIFF bytes from a ``(count, h, w)`` array using rasterio."""
    from rasterio.io import MemoryFile
    from rasterio.transform import from_bounds

    count, height, width = bands.shape
    transform = from_bounds(*SAMPLE_BBOX, width, height)
    profile = {
        "driver": "GTiff",
        "width": width,
        "height": height,
        "count": count,
        "dtype": dtype,
        "crs": "EPSG:4326",
        "transform": transform,
    }
    if nodata is not None:
        profile["nodata"] = nodata

    with MemoryFile() as memfile:
        with memfile.open(**profile) as dst:
            dst.write(bands.astype(dtype))
        return memfile.read()


def make_band(values: list[float] | np.ndarray, width: int, height: int) -> BandRaster:
    return BandRaster(
        width=width,
        height=height,
        reflectance=np.asarray(values, dtype=np.float64).ravel(),
    )


def uniform_band(value: float, width: int = 12, height: int = 12) -> BandRaster:
    return make_band(np.full(width * height, value), width, height)


def make_scene(
    scene_id: str = "S2A_MSIL2A_20260110",
    *,
    provider: str = "planetary_computer",
    acquired: datetime | None = datetime(2026, 1, 10, 18, 40, tzinfo=UTC),
    cloud: float | None = 5.0,
    assets: dict[str, str] | None = None,
) -> Scene:
    return Scene(
        scene_id=scene_id,
        provider=provider,
        acquisition_date=acquired,
        cloud_cover_pct=cloud,
        platform="Sentinel-2A",
        collection="sentinel-2-l2a",
        assets={"B04": "red.tif", "B08": "nir.tif"} if assets is None else assets,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_polygon() -> Polygon:
    return Polygon(ring=SAMPLE_RING)


@pytest.fixture()
def normalized_request() -> NormalizedIngestRequest:
    """A normalised request over ``SAMPLE_BBOX`` without an AOI polygon."""
    return NormalizedIngestRequest(
        bbox=SAMPLE_BBOX,
        polygon=None,
        date_from=date(2025, 11, 26),
        date_to=date(2026, 1, 10),
        target_size=128,
        policy=ScenePolicy.BALANCED,
    )


@pytest.fixture()
def healthy_bands() -> BandSet:
    """Uniform vegetated canopy: NDVI 0.6, NDMI 0.2."""
    return BandSet(
        red=uniform_band(0.1),
        nir=uniform_band(0.4),
        swir=uniform_band(0.266666),
    )
