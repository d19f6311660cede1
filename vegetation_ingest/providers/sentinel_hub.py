"""Sentinel Hub adapter (Catalog API + Process API).

Concrete ``SceneProvider`` backed by Sentinel Hub.  Two deployments are
tried in order: the classic Sentinel Hub services and the Copernicus
Data Space Ecosystem (CDSE).  The first one that issues an OAuth token
is used for the rest of the attempt.

Bands are fetched with a single Process API request that returns a
4-band ``FLOAT32`` reflectance cube (B02, B04, B08, B11) as GeoTIFF;
nodata pixels are NaN.

Configuration:
    ``ProviderConfig.extra_params["client_id"]`` and
    ``["client_secret"]`` carry the OAuth client credentials
    (``SENTINEL_HUB_CLIENT_ID`` / ``SENTINEL_HUB_CLIENT_SECRET``).
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from vegetation_ingest.core.http import raise_if_cancelled
from vegetation_ingest.models.imagery import BandSet, ModelValidationError, Scene
from vegetation_ingest.processing.decode import decode_reflectance_cube
from vegetation_ingest.providers.base import (
    ProviderAuthError,
    ProviderFetchError,
    ProviderSearchError,
    SceneProvider,
)

if TYPE_CHECKING:
    from vegetation_ingest.models.imagery import ProviderConfig
    from vegetation_ingest.models.request import NormalizedIngestRequest

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CREDENTIALS_ERROR_CODE = "sentinel_credentials_missing_or_invalid"
CRS84 = "http://www.opengis.net/def/crs/OGC/1.3/CRS84"
COLLECTION = "sentinel-2-l2a"
SEARCH_LIMIT = 16

# Seconds shaved off a token's lifetime before it is considered stale.
TOKEN_EXPIRY_MARGIN_S = 30.0

EVALSCRIPT_REFLECTANCE = """//VERSION=3
function setup() {
  return {
    input: [{
      bands: ["B02", "B04", "B08", "B11", "dataMask"],
      units: ["REFLECTANCE", "REFLECTANCE", "REFLECTANCE", "REFLECTANCE", "DN"]
    }],
    output: { bands: 4, sampleType: "FLOAT32" }
  }
}
function evaluatePixel(s) {
  if (s.dataMask === 0) return [NaN, NaN, NaN, NaN]
  return [s.B02, s.B04, s.B08, s.B11]
}"""


@dataclass(frozen=True, slots=True)
class SentinelEndpoints:
    """OAuth, Catalog and Process endpoints of one Sentinel Hub deployment."""

    label: str
    token_url: str
    api_base_url: str

    @property
    def catalog_url(self) -> str:
        return f"{self.api_base_url}/api/v1/catalog/1.0.0/search"

    @property
    def process_url(self) -> str:
        return f"{self.api_base_url}/api/v1/process"


CLASSIC = SentinelEndpoints(
    label="sentinel-hub-classic",
    token_url="https://services.sentinel-hub.com/oauth/token",
    api_base_url="https://services.sentinel-hub.com",
)
CDSE = SentinelEndpoints(
    label="sentinel-hub-cdse",
    token_url="https://identity.dataspace.copernicus.eu/auth/realms/CDSE/protocol/openid-connect/token",
    api_base_url="https://sh.dataspace.copernicus.eu",
)
DEFAULT_ENDPOINTS: tuple[SentinelEndpoints, ...] = (CLASSIC, CDSE)


@dataclass(frozen=True, slots=True)
class _Session:
    endpoints: SentinelEndpoints
    token: str
    expires_at: float


class SentinelHubAdapter(SceneProvider):
    """Sentinel Hub adapter with classic → CDSE credential fallback.

    Scenes come from the Catalog API and carry no band assets; the
    Process API renders the bands for the selected scene's day.
    """

    required_assets = ()

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.Client | None = None,
        endpoints: tuple[SentinelEndpoints, ...] = DEFAULT_ENDPOINTS,
    ) -> None:
        super().__init__(config, client=client)
        self._endpoints = endpoints
        self._session: _Session | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    def search(
        self,
        request: NormalizedIngestRequest,
        *,
        cancel_event: threading.Event | None = None,
    ) -> list[Scene]:
        """Search the Catalog API for Sentinel-2 L2A scenes.

        Raises:
            ProviderAuthError: ``sentinel_credentials_missing_or_invalid``.
            ProviderSearchError: ``sentinel_search_failed_<status>`` or
                ``sentinel_search_timeout``.
        """
        with self.http_client() as client:
            session = self._get_session(client, cancel_event)
            body = {
                "bbox": list(request.bbox),
                "datetime": _time_range(request.date_from.isoformat(), request.date_to.isoformat()),
                "collections": [COLLECTION],
                "limit": SEARCH_LIMIT,
            }
            try:
                response = self.request(
                    client,
                    "POST",
                    session.endpoints.catalog_url,
                    json=body,
                    headers=_bearer(session.token),
                    cancel_event=cancel_event,
                )
            except httpx.TimeoutException as exc:
                msg = "Sentinel Hub catalog search timed out"
                raise ProviderSearchError(
                    self.name, msg, code="sentinel_search_timeout", retryable=True
                ) from exc
            except httpx.TransportError as exc:
                msg = f"Sentinel Hub catalog search failed: {exc}"
                raise ProviderSearchError(
                    self.name, msg, code="sentinel_search_failed_network", retryable=True
                ) from exc

        if not response.is_success:
            msg = f"Sentinel Hub catalog search returned HTTP {response.status_code}"
            raise ProviderSearchError(
                self.name, msg, code=f"sentinel_search_failed_{response.status_code}"
            )

        features = response.json().get("features") or []
        scenes = [scene for f in features if (scene := self._feature_to_scene(f)) is not None]
        logger.info(
            "Sentinel Hub search | deployment=%s | features=%d | scenes=%d | bbox=%s",
            session.endpoints.label,
            len(features),
            len(scenes),
            request.bbox,
        )
        return scenes

    # ------------------------------------------------------------------
    # fetch_bands
    # ------------------------------------------------------------------

    def fetch_bands(
        self,
        scene: Scene,
        request: NormalizedIngestRequest,
        width: int,
        height: int,
        *,
        cancel_event: threading.Event | None = None,
    ) -> BandSet:
        """Render the reflectance cube for *scene* via the Process API.

        Raises:
            ProviderAuthError: ``sentinel_credentials_missing_or_invalid``.
            ProviderFetchError: ``sentinel_fetch_failed_<status>`` or
                ``sentinel_fetch_timeout``.
            ReflectanceCubeError: If the cube has fewer than 4 bands.
        """
        if scene.acquisition_date is not None:
            day = scene.acquisition_date.date().isoformat()
            time_range = {"from": f"{day}T00:00:00Z", "to": f"{day}T23:59:59Z"}
        else:
            time_range = {
                "from": f"{request.date_from.isoformat()}T00:00:00Z",
                "to": f"{request.date_to.isoformat()}T23:59:59Z",
            }

        body = {
            "input": {
                "bounds": {"bbox": list(request.bbox), "properties": {"crs": CRS84}},
                "data": [
                    {
                        "type": COLLECTION,
                        "dataFilter": {"timeRange": time_range, "mosaickingOrder": "leastCC"},
                    }
                ],
            },
            "evalscript": EVALSCRIPT_REFLECTANCE,
            "output": {
                "width": width,
                "height": height,
                "responses": [{"identifier": "default", "format": {"type": "image/tiff"}}],
            },
        }

        with self.http_client() as client:
            session = self._get_session(client, cancel_event)
            try:
                response = self.request(
                    client,
                    "POST",
                    session.endpoints.process_url,
                    json=body,
                    headers={**_bearer(session.token), "Accept": "image/tiff"},
                    cancel_event=cancel_event,
                )
            except httpx.TimeoutException as exc:
                msg = f"Sentinel Hub process request timed out for {scene.scene_id}"
                raise ProviderFetchError(
                    self.name, msg, code="sentinel_fetch_timeout", retryable=True
                ) from exc
            except httpx.TransportError as exc:
                msg = f"Sentinel Hub process request failed for {scene.scene_id}: {exc}"
                raise ProviderFetchError(
                    self.name, msg, code="sentinel_fetch_failed_network", retryable=True
                ) from exc

        if not response.is_success:
            msg = f"Sentinel Hub process request returned HTTP {response.status_code}"
            raise ProviderFetchError(
                self.name, msg, code=f"sentinel_fetch_failed_{response.status_code}"
            )

        _blue, red, nir, swir = decode_reflectance_cube(response.content)
        logger.info(
            "Sentinel Hub cube fetched | deployment=%s | scene=%s | size=%dx%d",
            session.endpoints.label,
            scene.scene_id,
            width,
            height,
        )
        return BandSet(red=red, nir=nir, swir=swir)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _get_session(self, client: httpx.Client, cancel_event: threading.Event | None) -> _Session:
        """Return a live token, authenticating against each deployment in turn."""
        with self._lock:
            if self._session is not None and time.monotonic() < self._session.expires_at:
                return self._session

        client_id = self.config.extra_params.get("client_id", "")
        client_secret = self.config.extra_params.get("client_secret", "")
        if not client_id or not client_secret:
            msg = "Sentinel Hub client credentials are not configured"
            raise ProviderAuthError(self.name, msg, code=CREDENTIALS_ERROR_CODE)

        for endpoints in self._endpoints:
            raise_if_cancelled(cancel_event, f"{endpoints.label} token request")
            token = self._request_token(client, endpoints, client_id, client_secret)
            if token is not None:
                with self._lock:
                    self._session = token
                return token

        msg = "No Sentinel Hub deployment accepted the configured credentials"
        raise ProviderAuthError(self.name, msg, code=CREDENTIALS_ERROR_CODE)

    def _request_token(
        self,
        client: httpx.Client,
        endpoints: SentinelEndpoints,
        client_id: str,
        client_secret: str,
    ) -> _Session | None:
        try:
            response = client.post(
                endpoints.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": client_id,
                    "client_secret": client_secret,
                },
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Sentinel Hub token request failed | deployment=%s | error=%s",
                endpoints.label,
                exc,
            )
            return None

        if not response.is_success:
            logger.warning(
                "Sentinel Hub token rejected | deployment=%s | status=%d",
                endpoints.label,
                response.status_code,
            )
            return None

        payload = response.json()
        token = payload.get("access_token")
        if not token:
            return None
        expires_in = float(payload.get("expires_in") or 3600)
        logger.debug("Sentinel Hub token issued | deployment=%s", endpoints.label)
        return _Session(
            endpoints=endpoints,
            token=str(token),
            expires_at=time.monotonic() + max(0.0, expires_in - TOKEN_EXPIRY_MARGIN_S),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _feature_to_scene(self, feature: dict[str, Any]) -> Scene | None:
        """Convert a Catalog API feature to a ``Scene``, or ``None`` if unusable."""
        try:
            properties = feature.get("properties") or {}
            dt_str = properties.get("datetime") or ""
            cloud_raw = properties.get("eo:cloud_cover")
            return Scene(
                scene_id=str(feature["id"]),
                provider=self.name,
                acquisition_date=(
                    datetime.fromisoformat(dt_str.replace("Z", "+00:00")) if dt_str else None
                ),
                cloud_cover_pct=float(cloud_raw) if isinstance(cloud_raw, (int, float)) else None,
                platform=properties.get("platform") or "Sentinel-2",
                collection=COLLECTION,
            )
        except (KeyError, ValueError, TypeError, AttributeError, ModelValidationError):
            logger.warning(
                "Skipping unparseable catalog feature: %s",
                feature.get("id", "?") if isinstance(feature, dict) else "?",
                exc_info=True,
            )
            return None


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _time_range(date_from: str, date_to: str) -> str:
    return f"{date_from}T00:00:00Z/{date_to}T23:59:59Z"
