"""Finalize stage: decoded bands → complete ``IngestResult``.

Runs synchronously after a successful band fetch:

    Index → Downsample → AoiMask → Stats (+preview) → GridAggregate
    → FootprintBuild → Encode

Everything after the index computation works on the downsampled
transport grid, so the mask, statistics, 3x3 cells and footprints all
describe exactly the pixels that are shipped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from vegetation_ingest.models.result import (
    AlignmentInfo,
    AoiMaskMeta,
    CellFootprintInfo,
    GridCell,
    ImageryInfo,
    IngestResult,
    MetricGrid,
    MoistureIndexBlock,
    SceneRef,
    StatsBlock,
    VegetationIndexBlock,
)
from vegetation_ingest.processing.decode import ensure_same_shape
from vegetation_ingest.processing.downsample import downsample_grid
from vegetation_ingest.processing.encode import encode_float32, encode_mask, render_preview_png
from vegetation_ingest.processing.geometry import build_aoi_mask, derive_alignment
from vegetation_ingest.processing.grid import build_cell_footprints, compute_grid_3x3
from vegetation_ingest.processing.index import compute_index_grid
from vegetation_ingest.processing.stats import compute_stats

if TYPE_CHECKING:
    from vegetation_ingest.core.config import IngestConfig
    from vegetation_ingest.models.imagery import AoiMask, BandSet, IndexGrid, IndexStats, Scene
    from vegetation_ingest.models.request import NormalizedIngestRequest

logger = logging.getLogger(__name__)

LOW_VALID_RATIO_WARNING = "Low valid pixel ratio detected. Consider adjusting date range or bbox."

GRID_DECIMALS = 4
STATS_DECIMALS = 6
RATIO_DECIMALS = 4


def _r(value: float, digits: int) -> float:
    return round(float(value), digits)


def _metric_grid(grid: IndexGrid) -> MetricGrid:
    valid = grid.valid_mask.astype(bool)
    if valid.any():
        lo, hi = float(np.min(grid.values[valid])), float(np.max(grid.values[valid]))
    else:
        lo = hi = 0.0
    return MetricGrid(
        encoded=encode_float32(grid.values),
        valid_mask_encoded=encode_mask(grid.valid_mask),
        width=grid.width,
        height=grid.height,
        min=_r(lo, GRID_DECIMALS),
        max=_r(hi, GRID_DECIMALS),
    )


def _stats_block(stats: IndexStats) -> StatsBlock:
    return StatsBlock(
        min=_r(stats.min, STATS_DECIMALS),
        max=_r(stats.max, STATS_DECIMALS),
        mean=_r(stats.mean, STATS_DECIMALS),
        p10=_r(stats.p10, STATS_DECIMALS),
        p90=_r(stats.p90, STATS_DECIMALS),
    )


def _vegetation_block(
    grid: IndexGrid,
    aoi: AoiMask,
    request: NormalizedIngestRequest,
    config: IngestConfig,
) -> tuple[VegetationIndexBlock, IndexStats]:
    stats = compute_stats(grid.values, grid.valid_mask, aoi.mask)
    preview = render_preview_png(grid.values, grid.valid_mask, grid.width, grid.height)

    cells = compute_grid_3x3(
        grid.values,
        grid.valid_mask,
        grid.width,
        grid.height,
        aoi_mask=aoi.mask,
        policy=config.stress_policy,
    )
    footprints = build_cell_footprints(
        request.bbox,
        grid.width,
        grid.height,
        polygon=request.polygon,
        aoi_mask=aoi.mask,
    )
    logger.debug(
        "Zonal summary built | cells=%d | footprints=%d | aoi_applied=%s",
        len(cells),
        len(footprints),
        aoi.applied,
    )

    block = VegetationIndexBlock(
        preview_png=preview,
        width=grid.width,
        height=grid.height,
        metric_grid=_metric_grid(grid),
        stats=_stats_block(stats),
        valid_pixel_ratio=_r(stats.valid_pixel_ratio, RATIO_DECIMALS),
        aoi_mask_meta=AoiMaskMeta(
            applied=aoi.applied,
            covered_pixel_ratio=_r(aoi.covered_pixel_ratio, RATIO_DECIMALS),
        ),
        grid3x3=[
            GridCell(
                cell_id=c.cell_id,
                row=c.row,
                col=c.col,
                min=_r(c.min, GRID_DECIMALS),
                max=_r(c.max, GRID_DECIMALS),
                mean=_r(c.mean, GRID_DECIMALS),
                valid_pixel_ratio=_r(c.valid_pixel_ratio, RATIO_DECIMALS),
                stress_level=c.stress_level,
            )
            for c in cells
        ],
        cell_footprints=[
            CellFootprintInfo(
                cell_id=f.cell_id,
                row=f.row,
                col=f.col,
                polygon=(
                    {"type": "Polygon", "coordinates": [[list(p) for p in f.ring]]}
                    if f.ring
                    else None
                ),
                coverage=_r(f.coverage, RATIO_DECIMALS),
                area_ha=_r(f.area_ha, GRID_DECIMALS),
            )
            for f in footprints
        ],
    )
    return block, stats


def finalize_result(
    *,
    provider: str,
    fallback_used: bool,
    scene: Scene,
    bands: BandSet,
    request: NormalizedIngestRequest,
    config: IngestConfig,
    warnings: list[str] | None = None,
) -> IngestResult:
    """Turn decoded bands into a complete, transport-ready result.

    Raises:
        BandDimensionMismatchError: If the bands differ in width/height.
    """
    ensure_same_shape(bands.red, bands.nir, bands.swir)

    ndvi_full = compute_index_grid(bands.nir, bands.red, config.min_signal)
    ndvi = downsample_grid(
        ndvi_full.values, ndvi_full.valid_mask, ndvi_full.width, ndvi_full.height, config.transport_size
    )
    logger.debug(
        "NDVI computed | source=%dx%d | transport=%dx%d",
        ndvi_full.width,
        ndvi_full.height,
        ndvi.width,
        ndvi.height,
    )

    aoi = build_aoi_mask(request.bbox, ndvi.width, ndvi.height, request.polygon)
    ndvi_block, ndvi_stats = _vegetation_block(ndvi, aoi, request, config)

    ndmi_block = None
    if bands.swir is not None:
        ndmi_full = compute_index_grid(bands.nir, bands.swir, config.min_signal)
        ndmi = downsample_grid(
            ndmi_full.values,
            ndmi_full.valid_mask,
            ndmi_full.width,
            ndmi_full.height,
            config.transport_size,
        )
        ndmi_stats = compute_stats(ndmi.values, ndmi.valid_mask, aoi.mask)
        ndmi_block = MoistureIndexBlock(
            metric_grid=_metric_grid(ndmi),
            stats=_stats_block(ndmi_stats),
            valid_pixel_ratio=_r(ndmi_stats.valid_pixel_ratio, RATIO_DECIMALS),
        )

    all_warnings = list(warnings or [])
    if ndvi_stats.valid_pixel_ratio < config.low_valid_ratio_warning:
        all_warnings.append(LOW_VALID_RATIO_WARNING)

    alignment = derive_alignment(request.bbox, ndvi.width, ndvi.height)
    scene_date = scene.acquisition_date.isoformat() if scene.acquisition_date else None

    return IngestResult(
        provider=provider,
        fallback_used=fallback_used,
        imagery=ImageryInfo(
            id=scene.scene_id,
            date=scene_date,
            cloud_cover=scene.cloud_cover_pct,
            platform=scene.platform,
        ),
        bbox=list(request.bbox),
        alignment=AlignmentInfo(
            bbox=list(alignment.bbox),
            crs=alignment.crs,
            width=alignment.width,
            height=alignment.height,
            pixel_size_lon=alignment.pixel_size_lon,
            pixel_size_lat=alignment.pixel_size_lat,
            pixel_size_meters_approx=_r(alignment.pixel_size_meters_approx, 3),
        ),
        scene_ref=SceneRef(provider=provider, scene_id=scene.scene_id, scene_date=scene_date),
        ndvi=ndvi_block,
        ndmi=ndmi_block,
        warnings=all_warnings,
    )
