"""SceneProvider abstract base class.

Defines the capability every imagery provider adapter implements.  The
orchestrator holds an ordered collection of providers and interacts with
them only through this interface, so providers can be reordered or
replaced with test doubles without touching orchestration.

Lifecycle (per provider attempt):
    1. ``search(request)``                       — candidate scenes.
    2. ``fetch_bands(scene, request, w, h)``     — decoded reflectance bands.

Adapters raise ``ProviderError`` subclasses carrying a machine-readable
code (``stac_search_failed_503``, ``sentinel_fetch_timeout`` ...).  The
orchestrator records the code and falls back to the next provider.
"""

from __future__ import annotations

import abc
import contextlib
from typing import TYPE_CHECKING, Any

import httpx

from vegetation_ingest.core.exceptions import PipelineError
from vegetation_ingest.core.http import request_with_retry

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterator

    from vegetation_ingest.models.imagery import BandSet, ProviderConfig, Scene
    from vegetation_ingest.models.request import NormalizedIngestRequest


class SceneProvider(abc.ABC):
    """Abstract base class for scene provider adapters.

    The constructor receives a ``ProviderConfig`` (base URL, timeout,
    retry budget, provider-specific parameters) and optionally a shared
    ``httpx.Client``.  When no client is injected, each call opens a
    short-lived client bounded by ``config.timeout_s``.

    Example usage::

        provider = get_provider("planetary_computer")
        scenes = provider.search(request)
        bands = provider.fetch_bands(scenes[0], request, 256, 256)
    """

    #: Asset keys a scene must expose to be selectable.
    required_assets: tuple[str, ...] = ()

    def __init__(self, config: ProviderConfig, *, client: httpx.Client | None = None) -> None:
        self._config = config
        self._client = client

    @property
    def name(self) -> str:
        """Return the provider name from configuration."""
        return self._config.name

    @property
    def config(self) -> ProviderConfig:
        """Return the provider configuration (read-only)."""
        return self._config

    # ------------------------------------------------------------------
    # Abstract methods (every adapter implements these)
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def search(
        self,
        request: NormalizedIngestRequest,
        *,
        cancel_event: threading.Event | None = None,
    ) -> list[Scene]:
        """Search the provider's catalogue for scenes over the request.

        Args:
            request: The normalised request (bbox + date window).
            cancel_event: Optional event aborting further network calls.

        Returns:
            Candidate scenes, possibly empty.

        Raises:
            ProviderError: On API, credential or network failures.
        """

    @abc.abstractmethod
    def fetch_bands(
        self,
        scene: Scene,
        request: NormalizedIngestRequest,
        width: int,
        height: int,
        *,
        cancel_event: threading.Event | None = None,
    ) -> BandSet:
        """Fetch and decode the reflectance bands of *scene* over the bbox.

        Args:
            scene: The selected scene.
            request: The normalised request.
            width: Raster width in pixels.
            height: Raster height in pixels.
            cancel_event: Optional event aborting further network calls.

        Returns:
            A ``BandSet`` whose bands share the same dimensions.

        Raises:
            ProviderError: On API or network failures.
            PipelineError: On decode failures.
        """

    # ------------------------------------------------------------------
    # Shared HTTP plumbing
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def http_client(self) -> Iterator[httpx.Client]:
        """Yield the injected client, or a new one closed on exit."""
        if self._client is not None:
            yield self._client
            return
        with httpx.Client(timeout=self._config.timeout_s, follow_redirects=True) as client:
            yield client

    def request(
        self,
        client: httpx.Client,
        method: str,
        url: str,
        *,
        cancel_event: threading.Event | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send through ``request_with_retry`` with this provider's budget."""
        return request_with_retry(
            client,
            method,
            url,
            retries=self._config.retries,
            backoff_s=self._config.retry_backoff_s,
            cancel_event=cancel_event,
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Provider exceptions
# ---------------------------------------------------------------------------


class ProviderError(PipelineError):
    """Base exception for provider adapter errors.

    Attributes:
        provider: Name of the provider that raised the error.
        message: Human-readable error description.
        code: Machine-readable failure code recorded by the orchestrator.
        retryable: Whether the caller could plausibly retry.
    """

    default_stage = "provider"
    default_code = "provider_error"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        code: str = "",
        retryable: bool = False,
    ) -> None:
        self.provider = provider
        super().__init__(
            message,
            retryable=retryable,
            code=code or self.default_code,
            stage=self.default_stage,
        )

    def __str__(self) -> str:
        return f"[{self.provider}] {self.message}"


class ProviderAuthError(ProviderError):
    """Credentials missing or rejected by the provider."""

    default_code = "credentials_missing_or_invalid"

    def __init__(self, provider: str, message: str, *, code: str = "") -> None:
        super().__init__(provider, message, code=code, retryable=False)


class ProviderSearchError(ProviderError):
    """Error during catalogue search."""

    default_stage = "search"
    default_code = "search_failed"


class ProviderFetchError(ProviderError):
    """Error while fetching band rasters."""

    default_stage = "fetch"
    default_code = "fetch_failed"


class NoImageryFoundError(ProviderError):
    """No candidate scene carried the required band assets."""

    default_stage = "select"
    default_code = "no_imagery_found"
