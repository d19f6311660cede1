"""Geometry engine: AOI polygons on a lon/lat pixel grid.

Works in EPSG:4326 on an axis-aligned bounding box divided into a
``width x height`` pixel grid (row 0 north, column 0 west).  Pixel
centres are tested against the AOI ring with the crossing-number rule to
build the AOI mask; cell rectangles are intersected with the ring by
Sutherland-Hodgman clipping to build the 3x3 footprints.

Metric sizes use an equirectangular approximation: 111,320 m per degree
of latitude, longitude scaled by ``cos(mid_lat)``.  Footprint areas use
``pyproj.Geod`` on the WGS 84 ellipsoid.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

import numpy as np

from vegetation_ingest.core.constants import (
    MAX_TARGET_SIZE,
    METRES_PER_DEGREE_LAT,
    MIN_TARGET_SIZE,
    SENTINEL2_NATIVE_RESOLUTION_M,
)
from vegetation_ingest.models.imagery import (
    AoiMask,
    Alignment,
    BBox,
    LonLat,
    ModelValidationError,
    Polygon,
)

SQ_METRES_PER_HECTARE = 10_000.0
MIN_PIXEL_SIZE_M = 0.1


# ---------------------------------------------------------------------------
# Polygon normalisation
# ---------------------------------------------------------------------------


def _to_finite(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_polygon(value: Any) -> Polygon | None:
    """Coerce a GeoJSON-like polygon into a closed ``Polygon``.

    Only the exterior ring is used.  Coordinate pairs that cannot be
    coerced to finite numbers are dropped.  The ring is closed if the
    input left it open.

    Returns:
        The validated polygon, or ``None`` if *value* is not polygon
        shaped or fewer than four usable points remain.  Callers decide
        whether ``None`` means "no AOI restriction" or a hard error.
    """
    if not isinstance(value, dict) or value.get("type") != "Polygon":
        return None
    coordinates = value.get("coordinates")
    if not isinstance(coordinates, list) or not coordinates:
        return None

    exterior = coordinates[0]
    if not isinstance(exterior, list) or len(exterior) < 4:
        return None

    cleaned: list[LonLat] = []
    for point in exterior:
        if not isinstance(point, (list, tuple)) or len(point) < 2:
            continue
        lon = _to_finite(point[0])
        lat = _to_finite(point[1])
        if lon is None or lat is None:
            continue
        cleaned.append((lon, lat))

    if len(cleaned) < 4:
        return None
    if cleaned[0] != cleaned[-1]:
        cleaned.append(cleaned[0])

    try:
        return Polygon(ring=tuple(cleaned))
    except ModelValidationError:
        return None


def ring_bbox(ring: Sequence[LonLat]) -> BBox:
    """Return ``(min_lon, min_lat, max_lon, max_lat)`` of a ring."""
    lons = [p[0] for p in ring]
    lats = [p[1] for p in ring]
    return (min(lons), min(lats), max(lons), max(lats))


# ---------------------------------------------------------------------------
# Point in polygon
# ---------------------------------------------------------------------------


def point_in_polygon(point: LonLat, ring: Sequence[LonLat]) -> bool:
    """Crossing-number test of a single point against *ring*.

    Points exactly on an edge get whatever the crossing rule yields.
    """
    x, y = point
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def points_in_polygon(lons: np.ndarray, lats: np.ndarray, ring: Sequence[LonLat]) -> np.ndarray:
    """Vectorised ``point_in_polygon`` over arrays of coordinates.

    Loops over ring edges and evaluates every point per edge, so the
    result is identical to calling ``point_in_polygon`` per point.
    """
    lons = np.asarray(lons, dtype=np.float64)
    lats = np.asarray(lats, dtype=np.float64)
    inside = np.zeros(lons.shape, dtype=bool)
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        j = i
        if yi == yj:
            # Horizontal edges never satisfy the straddle test.
            continue
        straddles = (yi > lats) != (yj > lats)
        x_cross = (xj - xi) * (lats - yi) / (yj - yi) + xi
        inside ^= straddles & (lons < x_cross)
    return inside


# ---------------------------------------------------------------------------
# Rectangle clipping (Sutherland-Hodgman)
# ---------------------------------------------------------------------------


def _clip_edge(points: list[LonLat], axis: int, bound: float, keep_above: bool) -> list[LonLat]:
    """Clip *points* against one axis-aligned half-plane."""
    other = 1 - axis

    def inside(p: LonLat) -> bool:
        return p[axis] >= bound if keep_above else p[axis] <= bound

    def crossing(prev: LonLat, cur: LonLat) -> LonLat:
        t = (bound - prev[axis]) / (cur[axis] - prev[axis])
        value = prev[other] + t * (cur[other] - prev[other])
        return (bound, value) if axis == 0 else (value, bound)

    result: list[LonLat] = []
    for i, current in enumerate(points):
        previous = points[i - 1]
        if inside(current):
            if not inside(previous):
                result.append(crossing(previous, current))
            result.append(current)
        elif inside(previous):
            result.append(crossing(previous, current))
    return result


def clip_polygon_to_rect(ring: Sequence[LonLat], rect: BBox) -> list[LonLat]:
    """Clip a ring to ``rect`` (min_lon, min_lat, max_lon, max_lat).

    Clips against the left, right, bottom and top edges in that order.

    Returns:
        The clipped ring, closed, or an empty list when fewer than three
        vertices survive.
    """
    points = [(float(p[0]), float(p[1])) for p in ring]
    if len(points) > 1 and points[0] == points[-1]:
        points = points[:-1]
    if not points:
        return []

    min_lon, min_lat, max_lon, max_lat = rect
    points = _clip_edge(points, 0, min_lon, keep_above=True)
    points = _clip_edge(points, 0, max_lon, keep_above=False)
    points = _clip_edge(points, 1, min_lat, keep_above=True)
    points = _clip_edge(points, 1, max_lat, keep_above=False)

    if len(points) < 3:
        return []
    if points[0] != points[-1]:
        points.append(points[0])
    return points


# ---------------------------------------------------------------------------
# Pixel grid
# ---------------------------------------------------------------------------


def pixel_center_lonlat(bbox: BBox, width: int, height: int, x: int, y: int) -> LonLat:
    """Return the lon/lat centre of pixel ``(x, y)``."""
    pixel_w = (bbox[2] - bbox[0]) / max(1, width)
    pixel_h = (bbox[3] - bbox[1]) / max(1, height)
    return (bbox[0] + (x + 0.5) * pixel_w, bbox[3] - (y + 0.5) * pixel_h)


def build_aoi_mask(bbox: BBox, width: int, height: int, polygon: Polygon | None = None) -> AoiMask:
    """Rasterize *polygon* onto the pixel grid by pixel-centre sampling.

    Without a polygon every pixel is eligible and ``mask`` is ``None``.
    """
    if polygon is None:
        return AoiMask(mask=None, applied=False, covered_pixel_ratio=1.0)

    total = max(1, width * height)
    pixel_w = (bbox[2] - bbox[0]) / max(1, width)
    pixel_h = (bbox[3] - bbox[1]) / max(1, height)
    lons = bbox[0] + (np.arange(width) + 0.5) * pixel_w
    lats = bbox[3] - (np.arange(height) + 0.5) * pixel_h
    grid_lon, grid_lat = np.meshgrid(lons, lats)

    inside = points_in_polygon(grid_lon.ravel(), grid_lat.ravel(), polygon.ring)
    mask = inside.astype(np.uint8)
    return AoiMask(mask=mask, applied=True, covered_pixel_ratio=int(mask.sum()) / total)


def metric_span(bbox: BBox) -> tuple[float, float]:
    """Approximate ``(east-west, north-south)`` extent of *bbox* in metres."""
    mid_lat = math.radians((bbox[1] + bbox[3]) / 2)
    span_x = abs(bbox[2] - bbox[0]) * METRES_PER_DEGREE_LAT * math.cos(mid_lat)
    span_y = abs(bbox[3] - bbox[1]) * METRES_PER_DEGREE_LAT
    return span_x, span_y


def derive_alignment(bbox: BBox, width: int, height: int) -> Alignment:
    """Describe the pixel geometry of a ``width x height`` grid over *bbox*."""
    pixel_size_lon = abs(bbox[2] - bbox[0]) / max(1, width)
    pixel_size_lat = abs(bbox[3] - bbox[1]) / max(1, height)
    span_x, span_y = metric_span(bbox)
    metres = (span_x / max(1, width) + span_y / max(1, height)) / 2
    return Alignment(
        bbox=bbox,
        width=width,
        height=height,
        pixel_size_lon=pixel_size_lon,
        pixel_size_lat=pixel_size_lat,
        pixel_size_meters_approx=max(MIN_PIXEL_SIZE_M, metres),
    )


def adaptive_target_size(bbox: BBox) -> int:
    """Pick a raster size that keeps close to Sentinel-2 native resolution."""
    span = max(metric_span(bbox))
    size = math.ceil(span / SENTINEL2_NATIVE_RESOLUTION_M)
    return max(MIN_TARGET_SIZE, min(MAX_TARGET_SIZE, size))


def raster_dimensions(bbox: BBox, target_size: int) -> tuple[int, int]:
    """Return ``(width, height)`` with the longest side equal to *target_size*.

    The shorter side follows the metric aspect ratio of *bbox*.
    """
    span_x, span_y = metric_span(bbox)
    if span_x <= 0 or span_y <= 0:
        return target_size, target_size
    if span_x >= span_y:
        return target_size, max(1, round(target_size * span_y / span_x))
    return max(1, round(target_size * span_x / span_y)), target_size


# ---------------------------------------------------------------------------
# Geodesic area
# ---------------------------------------------------------------------------


def geodesic_area_ha(ring: Sequence[LonLat]) -> float:
    """Geodesic area of *ring* in hectares (WGS 84, winding agnostic)."""
    if len(ring) < 3:
        return 0.0

    from pyproj import Geod

    geod = Geod(ellps="WGS84")
    lons = [p[0] for p in ring]
    lats = [p[1] for p in ring]
    area_m2, _perimeter = geod.polygon_area_perimeter(lons, lats)
    return abs(area_m2) / SQ_METRES_PER_HECTARE
