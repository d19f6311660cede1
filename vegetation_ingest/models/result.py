"""Pydantic wire schema for ingest results and error payloads.

Field names are snake_case in Python and camelCase on the wire
(``fallbackUsed``, ``pixelSizeLon``, ``validMaskEncoded`` ...).  Models
accept either spelling on input and always dump with aliases.

Rounding is applied when the models are built (see
``orchestrators.finalize``): grid values to 4 decimals, statistics to 6,
ratios to 4.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for camelCase wire models."""

    model_config = {"populate_by_name": True, "alias_generator": to_camel}


# ---------------------------------------------------------------------------
# Result blocks
# ---------------------------------------------------------------------------


class ImageryInfo(WireModel):
    """Scene metadata as reported by the provider."""

    id: str
    date: str | None = None
    cloud_cover: float | None = None
    platform: str | None = None


class AlignmentInfo(WireModel):
    """Pixel geometry of the transported grids."""

    bbox: list[float]
    crs: str = "EPSG:4326"
    width: int
    height: int
    pixel_size_lon: float
    pixel_size_lat: float
    pixel_size_meters_approx: float


class SceneRef(WireModel):
    provider: str
    scene_id: str
    scene_date: str | None = None


class MetricGrid(WireModel):
    """Base64 little-endian float32 values plus uint8 validity mask."""

    encoded: str
    valid_mask_encoded: str
    width: int
    height: int
    min: float
    max: float


class StatsBlock(WireModel):
    min: float
    max: float
    mean: float
    p10: float
    p90: float


class AoiMaskMeta(WireModel):
    applied: bool
    covered_pixel_ratio: float


class GridCell(WireModel):
    """One cell of the 3x3 zonal summary."""

    cell_id: str
    row: int
    col: int
    min: float
    max: float
    mean: float
    valid_pixel_ratio: float
    stress_level: str


class CellFootprintInfo(WireModel):
    """Footprint of one 3x3 cell.

    ``polygon`` is a GeoJSON Polygon, or ``None`` when the AOI does not
    reach the cell.
    """

    cell_id: str
    row: int
    col: int
    polygon: dict[str, object] | None = None
    coverage: float
    area_ha: float = 0.0


class VegetationIndexBlock(WireModel):
    """NDVI block: preview, metric grid, statistics and zonal summary."""

    preview_png: str
    width: int
    height: int
    metric_grid: MetricGrid
    stats: StatsBlock
    valid_pixel_ratio: float
    aoi_mask_meta: AoiMaskMeta
    grid3x3: list[GridCell] = Field(default_factory=list)
    cell_footprints: list[CellFootprintInfo] = Field(default_factory=list)


class MoistureIndexBlock(WireModel):
    """NDMI block: metric grid and statistics only."""

    metric_grid: MetricGrid
    stats: StatsBlock
    valid_pixel_ratio: float


class IngestResult(WireModel):
    """Complete result of a successful ingest."""

    provider: str
    fallback_used: bool
    imagery: ImageryInfo
    bbox: list[float]
    alignment: AlignmentInfo
    scene_ref: SceneRef
    ndvi: VegetationIndexBlock
    ndmi: MoistureIndexBlock | None = None
    warnings: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Serialise to the camelCase wire shape (``ndmi`` omitted if absent)."""
        data = self.model_dump(by_alias=True)
        if data.get("ndmi") is None:
            data.pop("ndmi", None)
        return data


# ---------------------------------------------------------------------------
# Error payload
# ---------------------------------------------------------------------------


class ProviderFailureInfo(WireModel):
    provider: str
    code: str
    message: str


class ErrorPayload(WireModel):
    """``{error, message, providers}`` returned when no result is produced."""

    error: str
    message: str
    providers: list[ProviderFailureInfo] = Field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)
