"""Tests for the provider orchestrator (``ingest``).

Providers are in-memory ``SceneProvider`` doubles, so the whole
search → select → fetch → finalize path runs without network access.
"""

from __future__ import annotations

import threading
from typing import Any

import httpx
import numpy as np
import pytest

from tests.conftest import SAMPLE_BBOX, make_scene, uniform_band
from vegetation_ingest.core.cache import TTLCache
from vegetation_ingest.core.config import IngestConfig
from vegetation_ingest.models.imagery import BandSet, ProviderConfig
from vegetation_ingest.models.outcome import (
    AllProvidersFailed,
    IngestSuccess,
    RequestCancelled,
    ValidationFailure,
)
from vegetation_ingest.models.request import IngestRequest
from vegetation_ingest.orchestrators.finalize import LOW_VALID_RATIO_WARNING
from vegetation_ingest.orchestrators.ingest_pipeline import FALLBACK_WARNING, ingest
from vegetation_ingest.providers.base import ProviderFetchError, ProviderSearchError, SceneProvider

BODY: dict[str, Any] = {
    "bbox": list(SAMPLE_BBOX),
    "date": "2025-12-01/2026-01-10",
    "targetSize": 128,
}


class FakeProvider(SceneProvider):
    """Scripted provider: fixed scenes, healthy bands, optional failures."""

    required_assets = ("B04", "B08")

    def __init__(
        self,
        name: str,
        *,
        scenes: list | None = None,
        search_error: Exception | None = None,
        fetch_error: Exception | None = None,
        red: float = 0.1,
        on_fetch: Any = None,
    ) -> None:
        super().__init__(ProviderConfig(name=name))
        self.scenes = [make_scene(provider=name)] if scenes is None else scenes
        self.search_error = search_error
        self.fetch_error = fetch_error
        self.red = red
        self.on_fetch = on_fetch
        self.search_calls = 0
        self.fetch_calls: list[tuple[str, int, int]] = []

    def search(self, request, *, cancel_event=None):
        self.search_calls += 1
        if self.search_error is not None:
            raise self.search_error
        return list(self.scenes)

    def fetch_bands(self, scene, request, width, height, *, cancel_event=None):
        self.fetch_calls.append((scene.scene_id, width, height))
        if self.on_fetch is not None:
            self.on_fetch()
        if self.fetch_error is not None:
            raise self.fetch_error
        return BandSet(
            red=uniform_band(self.red, width, height),
            nir=uniform_band(0.4, width, height),
        )


def _search_error(name: str, code: str) -> ProviderSearchError:
    return ProviderSearchError(name, f"{name} search broke", code=code)


class TestValidation:
    def test_missing_bbox(self) -> None:
        primary = FakeProvider("primary")
        outcome = ingest({"date": "2025-12-01/2026-01-10"}, providers=[primary])
        assert isinstance(outcome, ValidationFailure)
        assert outcome.code == "bbox_required"
        assert primary.search_calls == 0

    def test_invalid_geometry(self) -> None:
        outcome = ingest({**BODY, "geometry": {"type": "Polygon", "coordinates": [[[0, 0]]]}}, providers=[])
        assert isinstance(outcome, ValidationFailure)
        assert outcome.code == "invalid_geometry"
        assert outcome.to_error_payload().to_dict()["error"] == "invalid_geometry"

    def test_non_string_date(self) -> None:
        primary = FakeProvider("primary")
        outcome = ingest({**BODY, "date": 20260101}, providers=[primary])
        assert isinstance(outcome, ValidationFailure)
        assert outcome.code == "invalid_date"
        assert primary.search_calls == 0

    def test_accepts_request_object(self) -> None:
        outcome = ingest(IngestRequest(bbox=list(SAMPLE_BBOX)), providers=[FakeProvider("primary")])
        assert isinstance(outcome, IngestSuccess)


class TestProviderChain:
    def test_primary_success(self) -> None:
        primary, secondary = FakeProvider("primary"), FakeProvider("secondary")
        outcome = ingest(BODY, providers=[primary, secondary])

        assert isinstance(outcome, IngestSuccess)
        assert outcome.result.provider == "primary"
        assert outcome.result.fallback_used is False
        assert outcome.warnings == []
        assert secondary.search_calls == 0

    def test_fallback_after_primary_failure(self) -> None:
        primary = FakeProvider("primary", search_error=_search_error("primary", "stac_search_failed_503"))
        secondary = FakeProvider("secondary")
        outcome = ingest(BODY, providers=[primary, secondary])

        assert isinstance(outcome, IngestSuccess)
        assert outcome.result.provider == "secondary"
        assert outcome.result.fallback_used is True
        assert outcome.warnings[0] == FALLBACK_WARNING

    def test_all_failed_in_attempt_order(self) -> None:
        primary = FakeProvider("primary", search_error=_search_error("primary", "stac_search_failed_503"))
        secondary = FakeProvider(
            "secondary",
            fetch_error=ProviderFetchError("secondary", "boom", code="sentinel_fetch_failed_500"),
        )
        outcome = ingest(BODY, providers=[primary, secondary])

        assert isinstance(outcome, AllProvidersFailed)
        assert [(f.provider, f.code) for f in outcome.failures] == [
            ("primary", "stac_search_failed_503"),
            ("secondary", "sentinel_fetch_failed_500"),
        ]
        payload = outcome.to_error_payload().to_dict()
        assert payload["error"] == "all_providers_failed"
        assert payload["message"] == "No satellite providers were able to process this request."
        assert [p["provider"] for p in payload["providers"]] == ["primary", "secondary"]

    def test_no_usable_scene(self) -> None:
        primary = FakeProvider("primary", scenes=[make_scene(assets={"visual": "v"})])
        outcome = ingest(BODY, providers=[primary])

        assert isinstance(outcome, AllProvidersFailed)
        assert outcome.failures[0].code == "no_imagery_found"
        assert primary.fetch_calls == []

    def test_empty_provider_list(self) -> None:
        outcome = ingest(BODY, providers=[])
        assert isinstance(outcome, AllProvidersFailed)
        assert outcome.failures == ()

    def test_bare_http_errors_are_coded(self) -> None:
        request = httpx.Request("GET", "https://provider.test")
        slow = FakeProvider("slow", search_error=httpx.ReadTimeout("read timed out", request=request))
        down = FakeProvider("down", search_error=httpx.ConnectError("refused", request=request))
        outcome = ingest(BODY, providers=[slow, down])
        assert [f.code for f in outcome.failures] == ["slow_timeout", "down_network_error"]

    def test_unexpected_exception_recorded(self) -> None:
        broken = FakeProvider("broken", search_error=RuntimeError("kaboom"))
        outcome = ingest(BODY, providers=[broken, FakeProvider("backup")])

        assert isinstance(outcome, IngestSuccess)
        assert outcome.result.provider == "backup"

    def test_unexpected_exception_code(self) -> None:
        outcome = ingest(BODY, providers=[FakeProvider("broken", search_error=KeyError("x"))])
        assert outcome.failures[0].code == "unexpected_error"

    def test_fetch_dimensions_follow_target_size(self) -> None:
        primary = FakeProvider("primary")
        ingest(BODY, providers=[primary])
        _scene, width, height = primary.fetch_calls[0]
        assert max(width, height) == 128

    def test_low_valid_ratio_warning(self) -> None:
        outcome = ingest(BODY, providers=[FakeProvider("primary", red=0.0)])
        assert isinstance(outcome, IngestSuccess)
        assert outcome.result.ndvi.valid_pixel_ratio == 0.0
        assert LOW_VALID_RATIO_WARNING in outcome.warnings

    def test_transport_size_from_config(self) -> None:
        outcome = ingest(BODY, providers=[FakeProvider("primary")], config=IngestConfig(transport_size=32))
        assert max(outcome.result.ndvi.width, outcome.result.ndvi.height) == 32


class TestCache:
    def test_second_request_served_from_cache(self) -> None:
        cache = TTLCache()
        first = FakeProvider("primary")
        ingest(BODY, providers=[first], cache=cache)

        second = FakeProvider("primary")
        outcome = ingest(BODY, providers=[second], cache=cache)

        assert isinstance(outcome, IngestSuccess)
        assert second.search_calls == 0

    def test_different_request_misses(self) -> None:
        cache = TTLCache()
        ingest(BODY, providers=[FakeProvider("primary")], cache=cache)
        provider = FakeProvider("primary")
        ingest({**BODY, "policy": "lowest-cloud"}, providers=[provider], cache=cache)
        assert provider.search_calls == 1

    def test_failures_not_cached(self) -> None:
        cache = TTLCache()
        failing = FakeProvider("primary", search_error=_search_error("primary", "stac_search_failed_500"))
        ingest(BODY, providers=[failing], cache=cache)
        assert len(cache) == 0


class TestCancellation:
    def test_cancelled_before_start(self) -> None:
        event = threading.Event()
        event.set()
        primary = FakeProvider("primary")
        outcome = ingest(BODY, providers=[primary], cancel_event=event)

        assert isinstance(outcome, RequestCancelled)
        assert outcome.code == "request_cancelled"
        assert primary.search_calls == 0

    def test_cancelled_during_fetch_keeps_earlier_failures(self) -> None:
        event = threading.Event()
        primary = FakeProvider("primary", search_error=_search_error("primary", "stac_search_failed_503"))
        secondary = FakeProvider("secondary", on_fetch=event.set)
        tertiary = FakeProvider("tertiary")

        outcome = ingest(BODY, providers=[primary, secondary, tertiary], cancel_event=event)

        assert isinstance(outcome, RequestCancelled)
        assert [f.code for f in outcome.failures] == ["stac_search_failed_503"]
        assert tertiary.search_calls == 0
        payload = outcome.to_error_payload().to_dict()
        assert payload["error"] == "request_cancelled"


@pytest.mark.parametrize("policy", ["balanced", "lowest-cloud", "most-recent", "bogus"])
def test_every_policy_produces_a_result(policy: str) -> None:
    scenes = [
        make_scene("cloudy", cloud=80.0),
        make_scene("clear", cloud=1.0),
    ]
    outcome = ingest({**BODY, "policy": policy}, providers=[FakeProvider("primary", scenes=scenes)])
    assert isinstance(outcome, IngestSuccess)
    assert outcome.result.imagery.id == "clear"


def test_polygon_request_masks_aoi() -> None:
    ring = [[-120.508, 46.602], [-120.502, 46.602], [-120.502, 46.608], [-120.508, 46.608], [-120.508, 46.602]]
    outcome = ingest(
        {"geometry": {"type": "Polygon", "coordinates": [ring]}, "date": BODY["date"]},
        providers=[FakeProvider("primary")],
    )
    assert isinstance(outcome, IngestSuccess)
    result = outcome.result
    assert result.ndvi.aoi_mask_meta.applied is True
    assert result.bbox == pytest.approx([-120.508, 46.602, -120.502, 46.608])
    assert np.isclose(result.ndvi.valid_pixel_ratio, 1.0)
