"""Microsoft Planetary Computer adapter (STAC API + data API).

Concrete ``SceneProvider`` for Sentinel-2 L2A on the free Microsoft
Planetary Computer.  Scenes are found with ``pystac-client``; bands are
fetched as GeoTIFF crops of the request bbox from the data (tiler) API,
one request per band, issued concurrently.

Configuration:
    The STAC catalogue URL defaults to
    ``https://planetarycomputer.microsoft.com/api/stac/v1`` and the data
    API to ``https://planetarycomputer.microsoft.com/api/data/v1``.
    Override via ``ProviderConfig.api_base_url`` and
    ``ProviderConfig.extra_params["data_url"]``.

References:
    Planetary Computer STAC API:
        https://planetarycomputer.microsoft.com/docs/reference/stac/
    Planetary Computer data API:
        https://planetarycomputer.microsoft.com/docs/reference/data/
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from datetime import datetime
from typing import TYPE_CHECKING

import httpx
import pystac_client
import requests
from pystac_client.exceptions import APIError

from vegetation_ingest.core.http import raise_if_cancelled
from vegetation_ingest.models.imagery import BandSet, ModelValidationError, Scene
from vegetation_ingest.processing.decode import decode_band
from vegetation_ingest.providers.base import (
    ProviderFetchError,
    ProviderSearchError,
    SceneProvider,
)

if TYPE_CHECKING:
    import threading

    import pystac

    from vegetation_ingest.models.imagery import BandRaster, ProviderConfig
    from vegetation_ingest.models.request import NormalizedIngestRequest

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_STAC_URL = "https://planetarycomputer.microsoft.com/api/stac/v1"
DEFAULT_DATA_URL = "https://planetarycomputer.microsoft.com/api/data/v1"

SENTINEL2_COLLECTION = "sentinel-2-l2a"
SEARCH_LIMIT = 16

RED_ASSET = "B04"
NIR_ASSET = "B08"
SWIR_ASSET = "B11"


class PlanetaryComputerAdapter(SceneProvider):
    """Planetary Computer STAC adapter.

    Uses ``pystac-client`` for catalogue search and ``httpx`` for band
    crops.  Red and NIR are required; SWIR is fetched when the scene
    exposes it so the moisture index can be computed as well.
    """

    required_assets = (RED_ASSET, NIR_ASSET)

    def __init__(self, config: ProviderConfig, *, client: httpx.Client | None = None) -> None:
        super().__init__(config, client=client)
        self._stac_url = config.api_base_url or DEFAULT_STAC_URL
        self._data_url = (config.extra_params.get("data_url") or DEFAULT_DATA_URL).rstrip("/")

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    def search(
        self,
        request: NormalizedIngestRequest,
        *,
        cancel_event: threading.Event | None = None,
    ) -> list[Scene]:
        """Search the STAC catalogue for Sentinel-2 L2A scenes.

        Returns up to 16 items over the bbox and date window, newest
        first.  Unparseable items are skipped.

        Raises:
            ProviderSearchError: ``stac_search_failed_<status>`` on API errors.
                ``stac_search_timeout`` or ``stac_search_failed_network`` when
                the catalogue cannot be reached.
        """
        raise_if_cancelled(cancel_event, "STAC search")

        try:
            catalogue = pystac_client.Client.open(self._stac_url, timeout=self.config.timeout_s)
            stac_search = catalogue.search(
                bbox=list(request.bbox),
                collections=[SENTINEL2_COLLECTION],
                datetime=request.datetime_range,
                sortby="-properties.datetime",
                max_items=SEARCH_LIMIT,
            )
            items = list(stac_search.items())
        except APIError as exc:
            status = getattr(exc, "status_code", None) or "error"
            msg = f"STAC search failed: {exc}"
            raise ProviderSearchError(
                self.name, msg, code=f"stac_search_failed_{status}", retryable=True
            ) from exc
        except requests.exceptions.Timeout as exc:
            raise ProviderSearchError(
                self.name, f"STAC search timed out: {exc}", code="stac_search_timeout", retryable=True
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise ProviderSearchError(
                self.name,
                f"STAC search network error: {exc}",
                code="stac_search_failed_network",
                retryable=True,
            ) from exc

        scenes = [scene for item in items if (scene := self._item_to_scene(item)) is not None]
        logger.info(
            "Planetary Computer search | items=%d | scenes=%d | bbox=%s | datetime=%s",
            len(items),
            len(scenes),
            request.bbox,
            request.datetime_range,
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
        """Fetch B04, B08 (and B11 when present) crops concurrently.

        The first failing band fails the whole fetch; pending band
        requests are cancelled.

        Raises:
            ProviderFetchError: ``planetary_fetch_failed_<status>`` or
                ``planetary_fetch_timeout``.
            RasterDecodeError: If a crop is not a readable GeoTIFF.
        """
        assets = [RED_ASSET, NIR_ASSET]
        if SWIR_ASSET in scene.assets:
            assets.append(SWIR_ASSET)

        with self.http_client() as client:
            executor = ThreadPoolExecutor(max_workers=len(assets), thread_name_prefix="pc-band")
            try:
                futures = {
                    asset: executor.submit(
                        self._fetch_band, client, scene, request, asset, width, height, cancel_event
                    )
                    for asset in assets
                }
                done, _pending = wait(futures.values(), return_when=FIRST_EXCEPTION)
                for future in done:
                    exc = future.exception()
                    if exc is not None:
                        raise exc
                rasters = {asset: future.result() for asset, future in futures.items()}
            finally:
                executor.shutdown(wait=False, cancel_futures=True)

        logger.info(
            "Planetary Computer bands fetched | scene=%s | assets=%s | size=%dx%d",
            scene.scene_id,
            ",".join(assets),
            width,
            height,
        )
        return BandSet(
            red=rasters[RED_ASSET],
            nir=rasters[NIR_ASSET],
            swir=rasters.get(SWIR_ASSET),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fetch_band(
        self,
        client: httpx.Client,
        scene: Scene,
        request: NormalizedIngestRequest,
        asset: str,
        width: int,
        height: int,
        cancel_event: threading.Event | None,
    ) -> BandRaster:
        url = build_crop_url(self._data_url, request.bbox, width, height)
        params = {
            "collection": scene.collection or SENTINEL2_COLLECTION,
            "item": scene.scene_id,
            "assets": asset,
            "nodata": "0",
        }
        try:
            response = self.request(client, "GET", url, params=params, cancel_event=cancel_event)
        except httpx.TimeoutException as exc:
            msg = f"Band {asset} fetch timed out for {scene.scene_id}"
            raise ProviderFetchError(
                self.name, msg, code="planetary_fetch_timeout", retryable=True
            ) from exc
        except httpx.TransportError as exc:
            msg = f"Band {asset} fetch failed for {scene.scene_id}: {exc}"
            raise ProviderFetchError(
                self.name, msg, code="planetary_fetch_failed_network", retryable=True
            ) from exc

        if not response.is_success:
            msg = f"Band {asset} fetch for {scene.scene_id} returned HTTP {response.status_code}"
            raise ProviderFetchError(
                self.name, msg, code=f"planetary_fetch_failed_{response.status_code}"
            )

        return decode_band(response.content)

    def _item_to_scene(self, item: pystac.Item) -> Scene | None:
        """Convert a STAC item to a ``Scene``, or ``None`` if unusable."""
        try:
            properties = item.properties or {}

            dt_str = properties.get("datetime") or ""
            acquisition_date = (
                datetime.fromisoformat(dt_str.replace("Z", "+00:00")) if dt_str else None
            )

            cloud_raw = properties.get("eo:cloud_cover")
            cloud_cover = float(cloud_raw) if isinstance(cloud_raw, (int, float)) else None

            assets = {
                key: str(asset.href)
                for key, asset in (getattr(item, "assets", {}) or {}).items()
                if getattr(asset, "href", None)
            }

            return Scene(
                scene_id=item.id,
                provider=self.name,
                acquisition_date=acquisition_date,
                cloud_cover_pct=cloud_cover,
                platform=properties.get("platform") or None,
                collection=getattr(item, "collection_id", None) or SENTINEL2_COLLECTION,
                assets=assets,
            )
        except (KeyError, ValueError, TypeError, AttributeError, ModelValidationError):
            logger.warning(
                "Skipping unparseable STAC item: %s",
                getattr(item, "id", "?"),
                exc_info=True,
            )
            return None


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def build_crop_url(data_url: str, bbox: tuple[float, float, float, float], width: int, height: int) -> str:
    """Data API crop endpoint for *bbox* rendered at ``width x height``.

    Example:
        ``.../item/crop/-120.5,46.0,-120.0,46.5/256x256.tif``
    """
    coords = ",".join(repr(float(v)) for v in bbox)
    return f"{data_url}/item/crop/{coords}/{width}x{height}.tif"
