"""Typed models for scenes, rasters and their derived summaries.

Defines the data structures exchanged between the orchestrator, the
provider adapters and the raster processing stages:

- ``Polygon``: A validated, closed AOI exterior ring
- ``Scene``: A dated imagery acquisition returned by a provider search
- ``BandRaster`` / ``BandSet``: Decoded reflectance bands for one scene
- ``IndexGrid``: A normalized-difference grid plus its validity mask
- ``AoiMask``: The AOI polygon rasterized onto the grid
- ``Alignment``: Pixel geometry of a grid in EPSG:4326
- ``IndexStats``, ``GridCellSummary``, ``CellFootprint``: Derived summaries
- ``ProviderConfig``: Configuration for a specific imagery provider
- ``ProviderFailure``: One failed provider attempt

Design notes:
- All models are frozen dataclasses; models that hold numpy arrays opt
  out of generated equality.
- Arrays are flat, row-major (``index = y * width + x``), row 0 north.
- Every model is created and discarded within a single request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from vegetation_ingest.core.constants import WGS84_CRS
from vegetation_ingest.core.exceptions import PipelineError

if TYPE_CHECKING:
    from datetime import datetime

BBox = tuple[float, float, float, float]
LonLat = tuple[float, float]
Ring = tuple[LonLat, ...]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ModelValidationError(ValueError, PipelineError):
    """Raised when a domain model is constructed with invalid field values.

    Attributes:
        model: Name of the model class that failed validation.
        field_name: The field that violated the invariant.
        value: The invalid value.
    """

    default_stage = "model_validation"
    default_code = "MODEL_VALIDATION_FAILED"

    def __init__(self, model: str, field_name: str, value: object, message: str) -> None:
        self.model = model
        self.field_name = field_name
        self.value = value
        formatted = f"{model}.{field_name}={value!r}: {message}"
        PipelineError.__init__(self, formatted)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Polygon:
    """A validated AOI polygon exterior ring.

    The ring is closed (first point == last point) and holds at least
    four ``(lon, lat)`` points.  Holes are not represented.
    """

    ring: Ring

    def __post_init__(self) -> None:
        if len(self.ring) < 4:
            raise ModelValidationError("Polygon", "ring", len(self.ring), "must hold >= 4 points")
        if self.ring[0] != self.ring[-1]:
            raise ModelValidationError("Polygon", "ring", self.ring[-1], "must be closed")


# ---------------------------------------------------------------------------
# Scenes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Scene:
    """A single dated acquisition returned by a provider search.

    Attributes:
        scene_id: Provider-specific unique identifier for the scene.
        provider: Name of the imagery provider that returned it.
        acquisition_date: Capture date/time, ``None`` when unknown.
        cloud_cover_pct: Scene cloud cover (0-100), ``None`` when unknown.
        platform: Satellite platform (e.g. ``"Sentinel-2B"``).
        collection: Provider collection identifier.
        assets: Asset key → href for assets the scene exposes.
    """

    scene_id: str
    provider: str
    acquisition_date: datetime | None = None
    cloud_cover_pct: float | None = None
    platform: str | None = None
    collection: str = ""
    assets: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_non_empty("Scene", "scene_id", self.scene_id)
        _check_non_empty("Scene", "provider", self.provider)
        if self.cloud_cover_pct is not None:
            _check_range("Scene", "cloud_cover_pct", self.cloud_cover_pct, 0, 100)


# ---------------------------------------------------------------------------
# Rasters
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True, eq=False)
class BandRaster:
    """A decoded reflectance band (physical units, clamped to >= 0).

    Attributes:
        width: Raster width in pixels.
        height: Raster height in pixels.
        reflectance: Flat ``float64`` array of ``width * height`` samples.
            NaN marks samples the source flagged as nodata.
    """

    width: int
    height: int
    reflectance: np.ndarray

    def __post_init__(self) -> None:
        _check_min("BandRaster", "width", self.width, 1)
        _check_min("BandRaster", "height", self.height, 1)
        if self.reflectance.size != self.width * self.height:
            raise ModelValidationError(
                "BandRaster",
                "reflectance",
                self.reflectance.size,
                f"must hold width*height={self.width * self.height} samples",
            )


@dataclass(frozen=True, slots=True, eq=False)
class BandSet:
    """The reflectance bands fetched for one scene.

    ``swir`` is optional; when present a moisture index is computed too.
    """

    red: BandRaster
    nir: BandRaster
    swir: BandRaster | None = None


@dataclass(frozen=True, slots=True, eq=False)
class IndexGrid:
    """A normalized-difference grid.

    Attributes:
        values: Flat ``float32`` array; NaN where invalid.
        valid_mask: Flat ``uint8`` array, 1 where ``values`` is valid.
        width: Grid width in pixels.
        height: Grid height in pixels.
    """

    values: np.ndarray
    valid_mask: np.ndarray
    width: int
    height: int

    def __post_init__(self) -> None:
        expected = self.width * self.height
        if self.values.size != expected or self.valid_mask.size != expected:
            raise ModelValidationError(
                "IndexGrid",
                "values",
                (self.values.size, self.valid_mask.size),
                f"values and valid_mask must both hold {expected} samples",
            )


@dataclass(frozen=True, slots=True, eq=False)
class AoiMask:
    """The AOI polygon rasterized onto a grid.

    ``mask is None`` means no AOI restriction: every pixel is eligible.
    """

    mask: np.ndarray | None
    applied: bool
    covered_pixel_ratio: float


@dataclass(frozen=True, slots=True)
class Alignment:
    """Pixel geometry of a grid in geographic coordinates."""

    bbox: BBox
    width: int
    height: int
    pixel_size_lon: float
    pixel_size_lat: float
    pixel_size_meters_approx: float
    crs: str = WGS84_CRS


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class IndexStats:
    """Statistics over the AOI-eligible valid pixels of a grid."""

    min: float
    max: float
    mean: float
    p10: float
    p90: float
    valid_pixel_ratio: float
    valid_count: int
    eligible_count: int


@dataclass(frozen=True, slots=True)
class GridCellSummary:
    """Zonal statistics for one cell of the fixed 3x3 partition."""

    row: int
    col: int
    min: float
    max: float
    mean: float
    valid_pixel_ratio: float
    stress_level: str

    @property
    def cell_id(self) -> str:
        return f"{self.row}-{self.col}"


@dataclass(frozen=True, slots=True)
class CellFootprint:
    """Geographic footprint of one 3x3 cell.

    Attributes:
        row: Cell row (0 = north).
        col: Cell column (0 = west).
        ring: Closed ``(lon, lat)`` ring, or ``None`` when the AOI polygon
            does not reach this cell.
        coverage: Fraction of the cell's pixels covered by the AOI mask.
        area_ha: Geodesic area of ``ring`` in hectares.
    """

    row: int
    col: int
    ring: Ring | None
    coverage: float
    area_ha: float = 0.0

    @property
    def cell_id(self) -> str:
        return f"{self.row}-{self.col}"


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Configuration for a specific imagery provider.

    Attributes:
        name: Provider identifier (must match the adapter registry key).
        api_base_url: Base URL for the provider's API (empty = adapter default).
        timeout_s: Timeout applied to every outbound call.
        retries: Extra attempts for transient HTTP failures.
        retry_backoff_s: Linear backoff step between attempts.
        extra_params: Provider-specific configuration parameters.
    """

    name: str
    api_base_url: str = ""
    timeout_s: float = 25.0
    retries: int = 1
    retry_backoff_s: float = 0.35
    extra_params: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_non_empty("ProviderConfig", "name", self.name)
        _check_min("ProviderConfig", "timeout_s", self.timeout_s, 0)
        _check_min("ProviderConfig", "retries", self.retries, 0)


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    """One failed provider attempt, recorded in attempt order."""

    provider: str
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"provider": self.provider, "code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Validation helpers (module-private)
# ---------------------------------------------------------------------------


def _check_range(model: str, field_name: str, value: float, lo: float, hi: float) -> None:
    """Raise `ModelValidationError` if *value* falls outside [lo, hi]."""
    if value < lo or value > hi:
        raise ModelValidationError(model, field_name, value, f"must be between {lo} and {hi}")


def _check_min(model: str, field_name: str, value: float | int, lo: float | int) -> None:
    """Raise `ModelValidationError` if *value* is below *lo*."""
    if value < lo:
        raise ModelValidationError(model, field_name, value, f"must be >= {lo}")


def _check_non_empty(model: str, field_name: str, value: str) -> None:
    """Raise `ModelValidationError` if *value* is empty or blank."""
    if not value or not value.strip():
        raise ModelValidationError(model, field_name, value, "must not be empty")
