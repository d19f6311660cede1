"""Tests for request normalisation at the ingest boundary.

Covers:
- BBox validation (missing, malformed, inverted, non-finite)
- Geometry parsing from dict and JSON text, bbox derived from polygon
- Date window resolution and the default lookback
- Target size clamping and adaptive sizing
- Scene policy resolution
"""

from __future__ import annotations

import json
import math
from datetime import date

import pytest

from vegetation_ingest.core.exceptions import (
    BBoxRequiredError,
    InvalidDateError,
    InvalidGeometryError,
)
from vegetation_ingest.models.request import (
    IngestRequest,
    ScenePolicy,
    normalize_request,
    parse_polygon,
    resolve_date_range,
    resolve_policy,
    resolve_target_size,
)

TODAY = date(2026, 1, 10)
BBOX = [-120.51, 46.60, -120.50, 46.61]
GEOMETRY = {
    "type": "Polygon",
    "coordinates": [
        [[-120.508, 46.602], [-120.502, 46.602], [-120.502, 46.608], [-120.508, 46.602]]
    ],
}


class TestIngestRequestFromDict:
    def test_camel_case_target_size(self) -> None:
        req = IngestRequest.from_dict({"bbox": BBOX, "targetSize": 300, "policy": "most-recent"})
        assert req.bbox == BBOX
        assert req.target_size == 300
        assert req.policy == "most-recent"

    def test_snake_case_target_size(self) -> None:
        assert IngestRequest.from_dict({"target_size": 200}).target_size == 200

    def test_missing_fields_default_to_none(self) -> None:
        req = IngestRequest.from_dict({})
        assert req.bbox is None
        assert req.geometry is None
        assert req.date is None


class TestBBoxValidation:
    @pytest.mark.parametrize(
        "bbox",
        [
            None,
            [],
            [1, 2, 3],
            [1, 2, 3, 4, 5],
            "1,2,3,4",
            [0, 0, "east", 1],
            [0, 0, math.nan, 1],
            [0, 0, math.inf, 1],
            [True, 0, 1, 1],
            [1, 0, 0, 1],
            [0, 1, 1, 0],
            [0, 0, 0, 1],
        ],
    )
    def test_rejects(self, bbox: object) -> None:
        with pytest.raises(BBoxRequiredError) as exc_info:
            normalize_request(IngestRequest(bbox=bbox), today=TODAY)
        assert exc_info.value.code == "bbox_required"
        assert exc_info.value.stage == "normalize"

    def test_accepts_numeric_strings(self) -> None:
        normalized = normalize_request(
            IngestRequest(bbox=["-120.51", "46.60", "-120.50", "46.61"]), today=TODAY
        )
        assert normalized.bbox == (-120.51, 46.60, -120.50, 46.61)

    def test_tuple_bbox(self) -> None:
        normalized = normalize_request(IngestRequest(bbox=tuple(BBOX)), today=TODAY)
        assert normalized.bbox == tuple(BBOX)


class TestGeometry:
    def test_dict_geometry(self) -> None:
        normalized = normalize_request(IngestRequest(bbox=BBOX, geometry=GEOMETRY), today=TODAY)
        assert normalized.polygon is not None
        assert normalized.polygon.ring[0] == (-120.508, 46.602)

    def test_json_string_geometry(self) -> None:
        normalized = normalize_request(
            IngestRequest(bbox=BBOX, geometry=json.dumps(GEOMETRY)), today=TODAY
        )
        assert normalized.polygon is not None

    def test_no_geometry(self) -> None:
        assert parse_polygon(None) is None
        assert parse_polygon("") is None

    def test_invalid_json_text(self) -> None:
        with pytest.raises(InvalidGeometryError) as exc_info:
            normalize_request(IngestRequest(bbox=BBOX, geometry="{not json"), today=TODAY)
        assert exc_info.value.code == "invalid_geometry"

    def test_malformed_polygon(self) -> None:
        with pytest.raises(InvalidGeometryError):
            parse_polygon({"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]})

    def test_wrong_geometry_type(self) -> None:
        with pytest.raises(InvalidGeometryError):
            parse_polygon({"type": "LineString", "coordinates": [[0, 0], [1, 1]]})

    def test_bbox_derived_from_polygon(self) -> None:
        normalized = normalize_request(IngestRequest(geometry=GEOMETRY), today=TODAY)
        assert normalized.bbox == (-120.508, 46.602, -120.502, 46.608)

    def test_geometry_error_precedes_bbox_error(self) -> None:
        with pytest.raises(InvalidGeometryError):
            normalize_request(IngestRequest(bbox=None, geometry="[]"), today=TODAY)


class TestDateRange:
    def test_explicit_window(self) -> None:
        assert resolve_date_range("2025-06-01/2025-06-30", today=TODAY) == (
            date(2025, 6, 1),
            date(2025, 6, 30),
        )

    def test_datetime_bounds_are_truncated(self) -> None:
        start, end = resolve_date_range("2025-06-01T00:00:00/2025-06-30T23:59:59", today=TODAY)
        assert (start, end) == (date(2025, 6, 1), date(2025, 6, 30))

    def test_default_lookback(self) -> None:
        assert resolve_date_range(None, today=TODAY) == (date(2025, 11, 26), TODAY)

    def test_custom_lookback(self) -> None:
        assert resolve_date_range(None, lookback_days=10, today=TODAY)[0] == date(2025, 12, 31)

    @pytest.mark.parametrize("value", ["", "2025-06-01", "garbage/2025-01-01", "2025-06-30/2025-06-01"])
    def test_unusable_window_falls_back(self, value: str) -> None:
        assert resolve_date_range(value, today=TODAY) == (date(2025, 11, 26), TODAY)

    def test_normalized_datetime_range(self) -> None:
        normalized = normalize_request(
            IngestRequest(bbox=BBOX, date="2025-06-01/2025-06-30"), today=TODAY
        )
        assert normalized.datetime_range == "2025-06-01/2025-06-30"

    @pytest.mark.parametrize("value", [20260101, 2026.5, ["2025-06-01", "2025-06-30"], {"from": "2025-06-01"}, True])
    def test_non_string_rejected(self, value: object) -> None:
        with pytest.raises(InvalidDateError) as exc_info:
            resolve_date_range(value, today=TODAY)
        assert exc_info.value.code == "invalid_date"

    def test_non_string_rejected_by_normalize(self) -> None:
        with pytest.raises(InvalidDateError):
            normalize_request(IngestRequest(bbox=BBOX, date=20260101), today=TODAY)  # type: ignore[arg-type]


class TestTargetSize:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(10, 128), (128, 128), (300, 300), (300.6, 301), (5000, 1024)],
    )
    def test_numeric_is_clamped(self, value: float, expected: int) -> None:
        assert resolve_target_size(value, tuple(BBOX)) == expected

    @pytest.mark.parametrize("value", [None, "512", True, math.nan])
    def test_non_numeric_uses_adaptive_size(self, value: object) -> None:
        # ~765 m x 1113 m bbox -> 112 px at 10 m, clamped up to 128.
        assert resolve_target_size(value, tuple(BBOX)) == 128


class TestPolicy:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, ScenePolicy.BALANCED),
            ("balanced", ScenePolicy.BALANCED),
            ("lowest-cloud", ScenePolicy.LOWEST_CLOUD),
            ("most-recent", ScenePolicy.MOST_RECENT),
            ("cheapest", ScenePolicy.BALANCED),
        ],
    )
    def test_resolve(self, value: str | None, expected: ScenePolicy) -> None:
        assert resolve_policy(value) is expected


class TestCacheKeyParts:
    def test_identical_requests_share_parts(self) -> None:
        a = normalize_request(IngestRequest(bbox=BBOX, geometry=GEOMETRY), today=TODAY)
        b = normalize_request(IngestRequest(bbox=BBOX, geometry=json.dumps(GEOMETRY)), today=TODAY)
        assert a.cache_key_parts() == b.cache_key_parts()

    def test_policy_changes_parts(self) -> None:
        a = normalize_request(IngestRequest(bbox=BBOX), today=TODAY)
        b = normalize_request(IngestRequest(bbox=BBOX, policy="most-recent"), today=TODAY)
        assert a.cache_key_parts() != b.cache_key_parts()
