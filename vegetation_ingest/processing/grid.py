"""Grid aggregator: fixed 3x3 zonal summary and per-cell footprints.

The grid is always split into exactly nine cells by pixel-space
division (``x0 = floor(col * w / 3)``, ``x1 = floor((col + 1) * w / 3)``,
rows likewise), whatever the grid resolution.  Very small grids yield
empty cells, which are reported with a zero valid-pixel ratio.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from vegetation_ingest.models.imagery import (
    BBox,
    CellFootprint,
    GridCellSummary,
    Polygon,
)
from vegetation_ingest.processing.geometry import clip_polygon_to_rect, geodesic_area_ha

GRID_DIVISIONS = 3

STRESS_HIGH = "high"
STRESS_MODERATE = "moderate"
STRESS_LOW = "low"
STRESS_UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class StressPolicy:
    """Thresholds used to classify a cell's vegetation stress.

    Attributes:
        unknown_below: Cells whose valid-pixel ratio is below this are
            ``unknown`` regardless of their mean.
        high_below: Mean index below this is ``high`` stress.
        moderate_below: Mean index below this (and not high) is
            ``moderate`` stress; anything else is ``low``.
    """

    unknown_below: float = 0.1
    high_below: float = 0.28
    moderate_below: float = 0.42


def classify_stress(mean: float, valid_pixel_ratio: float, policy: StressPolicy | None = None) -> str:
    policy = policy or StressPolicy()
    if valid_pixel_ratio < policy.unknown_below:
        return STRESS_UNKNOWN
    if mean < policy.high_below:
        return STRESS_HIGH
    if mean < policy.moderate_below:
        return STRESS_MODERATE
    return STRESS_LOW


def cell_bounds(index: int, size: int) -> tuple[int, int]:
    """Pixel range ``[start, stop)`` of cell *index* along an axis of *size*."""
    return (index * size) // GRID_DIVISIONS, ((index + 1) * size) // GRID_DIVISIONS


def _iter_cells(width: int, height: int):
    for row in range(GRID_DIVISIONS):
        y0, y1 = cell_bounds(row, height)
        for col in range(GRID_DIVISIONS):
            x0, x1 = cell_bounds(col, width)
            yield row, col, slice(y0, y1), slice(x0, x1)


def compute_grid_3x3(
    values: np.ndarray,
    valid_mask: np.ndarray,
    width: int,
    height: int,
    aoi_mask: np.ndarray | None = None,
    policy: StressPolicy | None = None,
) -> list[GridCellSummary]:
    """Summarise the grid over a fixed 3x3 partition.

    Per cell, min/max/mean are taken over valid AOI-eligible pixels and
    ``valid_pixel_ratio`` is valid eligible pixels / eligible pixels
    (eligible = AOI-covered, or every cell pixel without an AOI mask).

    Returns:
        Exactly nine ``GridCellSummary`` objects in row-major order.
    """
    policy = policy or StressPolicy()
    grid = np.asarray(values, dtype=np.float64).reshape(height, width)
    valid = np.asarray(valid_mask).reshape(height, width).astype(bool)
    eligible = (
        np.ones((height, width), dtype=bool)
        if aoi_mask is None
        else np.asarray(aoi_mask).reshape(height, width).astype(bool)
    )

    cells: list[GridCellSummary] = []
    for row, col, ys, xs in _iter_cells(width, height):
        cell_eligible = eligible[ys, xs]
        cell_valid = valid[ys, xs] & cell_eligible
        selected = grid[ys, xs][cell_valid]

        eligible_count = int(cell_eligible.sum())
        ratio = selected.size / eligible_count if eligible_count else 0.0
        if selected.size:
            mean, lo, hi = float(selected.mean()), float(selected.min()), float(selected.max())
        else:
            mean = lo = hi = 0.0

        cells.append(
            GridCellSummary(
                row=row,
                col=col,
                min=lo,
                max=hi,
                mean=mean,
                valid_pixel_ratio=ratio,
                stress_level=classify_stress(mean, ratio, policy),
            )
        )
    return cells


def build_cell_footprints(
    bbox: BBox,
    width: int,
    height: int,
    polygon: Polygon | None = None,
    aoi_mask: np.ndarray | None = None,
) -> list[CellFootprint]:
    """Build the lon/lat footprint of each 3x3 cell.

    With an AOI polygon the footprint is the polygon clipped to the cell
    rectangle (``None`` when nothing survives); without one it is the
    full cell rectangle.  ``coverage`` is the AOI-covered share of the
    cell's pixels, 1.0 without an AOI mask.
    """
    pixel_w = (bbox[2] - bbox[0]) / max(1, width)
    pixel_h = (bbox[3] - bbox[1]) / max(1, height)
    mask = None if aoi_mask is None else np.asarray(aoi_mask).reshape(height, width)

    footprints: list[CellFootprint] = []
    for row, col, ys, xs in _iter_cells(width, height):
        west = bbox[0] + xs.start * pixel_w
        east = bbox[0] + xs.stop * pixel_w
        north = bbox[3] - ys.start * pixel_h
        south = bbox[3] - ys.stop * pixel_h

        if polygon is not None:
            clipped = clip_polygon_to_rect(polygon.ring, (west, south, east, north))
            ring = tuple(clipped) if clipped else None
        else:
            ring = ((west, south), (east, south), (east, north), (west, north), (west, south))

        if mask is None:
            coverage = 1.0
        else:
            cell = mask[ys, xs]
            coverage = float(cell.sum()) / cell.size if cell.size else 0.0

        footprints.append(
            CellFootprint(
                row=row,
                col=col,
                ring=ring,
                coverage=coverage,
                area_ha=geodesic_area_ha(ring) if ring else 0.0,
            )
        )
    return footprints
