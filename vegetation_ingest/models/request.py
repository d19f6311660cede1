"""Ingest request model and boundary parsing.

``IngestRequest`` carries the caller's loosely-typed input exactly as it
arrived.  ``normalize_request`` is the single parse step that turns it
into a ``NormalizedIngestRequest`` with a validated bbox, an optional
validated ``Polygon``, a resolved date window, a concrete raster size
and a scene policy.  Nothing downstream sees unvalidated input.

Rejections (both raised before any network call):
- ``BBoxRequiredError``: bbox missing, malformed or with empty extent.
- ``InvalidGeometryError``: a polygon was supplied but cannot be parsed.
"""

from __future__ import annotations

import enum
import json
import logging
import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

from vegetation_ingest.core.constants import (
    DEFAULT_LOOKBACK_DAYS,
    MAX_TARGET_SIZE,
    MIN_TARGET_SIZE,
)
from vegetation_ingest.core.exceptions import (
    BBoxRequiredError,
    InvalidDateError,
    InvalidGeometryError,
)
from vegetation_ingest.models.imagery import BBox, Polygon
from vegetation_ingest.processing.geometry import (
    adaptive_target_size,
    normalize_polygon,
    ring_bbox,
)

logger = logging.getLogger(__name__)


class ScenePolicy(enum.Enum):
    """How candidate scenes are ranked.

    Values:
        BALANCED:     Recency and cloud cover, with an in-window bonus.
        LOWEST_CLOUD: Mostly cloud cover.
        MOST_RECENT:  Mostly acquisition date.
    """

    BALANCED = "balanced"
    LOWEST_CLOUD = "lowest-cloud"
    MOST_RECENT = "most-recent"


@dataclass(frozen=True, slots=True)
class IngestRequest:
    """Raw ingest input as received from the caller.

    Attributes:
        bbox: ``[min_lon, min_lat, max_lon, max_lat]`` (any sequence).
        geometry: Optional GeoJSON Polygon, as a dict or a JSON string.
        date: Optional ``"YYYY-MM-DD/YYYY-MM-DD"`` window.
        target_size: Optional raster size in pixels.
        policy: Optional scene policy name.
    """

    bbox: Any = None
    geometry: Any = None
    date: str | None = None
    target_size: Any = None
    policy: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> IngestRequest:
        """Build a request from the JSON body shape (``targetSize`` camelCase)."""
        return cls(
            bbox=payload.get("bbox"),
            geometry=payload.get("geometry"),
            date=payload.get("date"),
            target_size=payload.get("targetSize", payload.get("target_size")),
            policy=payload.get("policy"),
        )


@dataclass(frozen=True, slots=True)
class NormalizedIngestRequest:
    """A validated request; every field is safe to use as-is.

    Attributes:
        bbox: Validated bbox with ``min < max`` on both axes.
        polygon: Validated AOI polygon, or ``None`` for a plain rectangle.
        date_from: First day of the search window (inclusive).
        date_to: Last day of the search window (inclusive).
        target_size: Longest raster side in pixels, within [128, 1024].
        policy: Scene ranking policy.
    """

    bbox: BBox
    polygon: Polygon | None
    date_from: date
    date_to: date
    target_size: int
    policy: ScenePolicy

    @property
    def datetime_range(self) -> str:
        """The window as ``"YYYY-MM-DD/YYYY-MM-DD"``."""
        return f"{self.date_from.isoformat()}/{self.date_to.isoformat()}"

    def cache_key_parts(self) -> list[str | int | float | bool]:
        """Ordered parts that identify this request for result caching."""
        ring = json.dumps(self.polygon.ring) if self.polygon else ""
        return [*self.bbox, ring, self.datetime_range, self.target_size, self.policy.value]


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def normalize_request(
    request: IngestRequest,
    *,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    today: date | None = None,
) -> NormalizedIngestRequest:
    """Validate *request* once, at the boundary.

    Args:
        request: The raw request.
        lookback_days: Window length used when ``request.date`` is absent
            or unusable.
        today: Override for the current UTC date (tests).

    Raises:
        BBoxRequiredError: If no usable bbox is supplied or derivable.
        InvalidGeometryError: If a polygon was supplied but is malformed.
        InvalidDateError: If ``date`` is present but not a string.
    """
    polygon = parse_polygon(request.geometry)

    if request.bbox is None and polygon is not None:
        bbox = _validate_bbox(ring_bbox(polygon.ring))
    else:
        bbox = _validate_bbox(request.bbox)

    date_from, date_to = resolve_date_range(
        request.date,
        lookback_days=lookback_days,
        today=today,
    )

    return NormalizedIngestRequest(
        bbox=bbox,
        polygon=polygon,
        date_from=date_from,
        date_to=date_to,
        target_size=resolve_target_size(request.target_size, bbox),
        policy=resolve_policy(request.policy),
    )


def parse_polygon(value: Any) -> Polygon | None:
    """Parse an optional GeoJSON polygon (dict or JSON text).

    Returns:
        ``None`` when no geometry was supplied.

    Raises:
        InvalidGeometryError: If a geometry was supplied but is unusable.
    """
    if value is None or value == "":
        return None

    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            msg = f"Geometry is not valid JSON: {exc}"
            raise InvalidGeometryError(msg) from exc

    polygon = normalize_polygon(value)
    if polygon is None:
        msg = "Geometry must be a GeoJSON Polygon with at least 4 numeric [lon, lat] points"
        raise InvalidGeometryError(msg)
    return polygon


def _validate_bbox(value: Any) -> BBox:
    if not isinstance(value, (list, tuple)) or len(value) != 4:
        msg = "Bounding box [minLon,minLat,maxLon,maxLat] is required."
        raise BBoxRequiredError(msg)

    try:
        numbers = [float(v) for v in value]
    except (TypeError, ValueError) as exc:
        msg = f"Bounding box values must be numeric: {value!r}"
        raise BBoxRequiredError(msg) from exc

    if any(isinstance(v, bool) for v in value) or not all(math.isfinite(n) for n in numbers):
        msg = f"Bounding box values must be finite numbers: {value!r}"
        raise BBoxRequiredError(msg)

    min_lon, min_lat, max_lon, max_lat = numbers
    if not (max_lon > min_lon and max_lat > min_lat):
        msg = f"Bounding box must satisfy minLon<maxLon and minLat<maxLat: {value!r}"
        raise BBoxRequiredError(msg)
    return (min_lon, min_lat, max_lon, max_lat)


def _parse_day(text: str) -> date:
    text = text.strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text).date()


def resolve_date_range(
    value: object,
    *,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    today: date | None = None,
) -> tuple[date, date]:
    """Resolve ``"from/to"`` into dates, defaulting to the last *lookback_days*.

    A malformed or inverted window falls back to the default window.
    Any non-string value is rejected with ``InvalidDateError``.
    """
    if value is not None and not isinstance(value, str):
        raise InvalidDateError(
            f'date must be a "YYYY-MM-DD/YYYY-MM-DD" string, got {type(value).__name__}'
        )
    if value and "/" in value:
        start_text, _, end_text = value.partition("/")
        try:
            start, end = _parse_day(start_text), _parse_day(end_text)
        except ValueError:
            logger.warning("Unparseable date window, using default | date=%s", value)
        else:
            if start <= end:
                return start, end
            logger.warning("Inverted date window, using default | date=%s", value)

    end = today or datetime.now(UTC).date()
    return end - timedelta(days=lookback_days), end


def resolve_target_size(value: Any, bbox: BBox) -> int:
    """Clamp a numeric size to [128, 1024], else derive one from the AOI span."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return max(MIN_TARGET_SIZE, min(MAX_TARGET_SIZE, round(value)))
    return adaptive_target_size(bbox)


def resolve_policy(value: str | None) -> ScenePolicy:
    if value is None:
        return ScenePolicy.BALANCED
    try:
        return ScenePolicy(value)
    except ValueError:
        logger.warning("Unknown scene policy, using balanced | policy=%s", value)
        return ScenePolicy.BALANCED
