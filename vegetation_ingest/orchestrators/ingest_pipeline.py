"""Provider orchestrator — the single ``ingest()`` entry point.

Control flow::

    normalize ──▶ cache lookup ──▶ for provider in priority order:
                                       search → select → fetch → finalize
                                       (any provider-path error → record, next)
                                ──▶ IngestSuccess | AllProvidersFailed

Validation errors end the request before any network call.  Provider
failures are recorded as ``ProviderFailure`` in attempt order and the
next provider is tried; there is no partial success.  A set
``cancel_event`` ends the request with ``RequestCancelled``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import httpx

from vegetation_ingest.core.cache import make_cache_key
from vegetation_ingest.core.config import IngestConfig
from vegetation_ingest.core.exceptions import PipelineError, ValidationError
from vegetation_ingest.core.http import RequestCancelledError, raise_if_cancelled
from vegetation_ingest.models.imagery import ProviderFailure
from vegetation_ingest.models.outcome import (
    AllProvidersFailed,
    IngestSuccess,
    RequestCancelled,
    ValidationFailure,
)
from vegetation_ingest.models.request import IngestRequest, normalize_request
from vegetation_ingest.orchestrators.finalize import finalize_result
from vegetation_ingest.orchestrators.scene_selection import pick_best_scene
from vegetation_ingest.processing.geometry import raster_dimensions
from vegetation_ingest.providers.base import NoImageryFoundError
from vegetation_ingest.providers.factory import build_providers

if TYPE_CHECKING:
    import threading
    from collections.abc import Sequence

    from vegetation_ingest.core.cache import ResultCache
    from vegetation_ingest.models.outcome import IngestOutcome
    from vegetation_ingest.models.request import NormalizedIngestRequest
    from vegetation_ingest.models.result import IngestResult
    from vegetation_ingest.providers.base import SceneProvider

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "Primary satellite provider failed; attempting fallback provider."
UNEXPECTED_ERROR_CODE = "unexpected_error"


def ingest(
    request: IngestRequest | dict[str, object],
    *,
    providers: Sequence[SceneProvider] | None = None,
    config: IngestConfig | None = None,
    cache: ResultCache | None = None,
    cancel_event: threading.Event | None = None,
    correlation_id: str = "",
) -> IngestOutcome:
    """Produce vegetation index products for one bbox/polygon request.

    Args:
        request: Raw request, or its JSON body as a dict.
        providers: Providers in priority order.  Defaults to
            ``build_providers(config)``.
        config: Ingestion configuration.  Defaults to ``IngestConfig()``.
        cache: Optional result cache; successful results are stored and
            reused for identical normalised requests.
        cancel_event: Optional event; once set, no further provider work
            is started and ``RequestCancelled`` is returned.
        correlation_id: Identifier echoed in log lines.

    Returns:
        One ``IngestOutcome`` variant.  Expected failures are never raised.
    """
    config = config or IngestConfig()
    if isinstance(request, dict):
        request = IngestRequest.from_dict(request)

    try:
        normalized = normalize_request(request, lookback_days=config.lookback_days)
    except ValidationError as exc:
        logger.warning(
            "Ingest request rejected | correlation_id=%s | code=%s | error=%s",
            correlation_id,
            exc.code,
            exc.message,
        )
        return ValidationFailure(code=exc.code, message=exc.message)

    logger.info(
        "Ingest started | correlation_id=%s | bbox=%s | polygon=%s | window=%s | "
        "target_size=%d | policy=%s",
        correlation_id,
        normalized.bbox,
        normalized.polygon is not None,
        normalized.datetime_range,
        normalized.target_size,
        normalized.policy.value,
    )

    cache_key = ""
    if cache is not None:
        cache_key = make_cache_key(normalized.cache_key_parts())
        cached = cache.get(cache_key)
        if cached is not None:
            logger.info("Ingest cache hit | correlation_id=%s | key=%s", correlation_id, cache_key)
            return IngestSuccess(result=cached)

    if providers is None:
        providers = build_providers(config)

    failures: list[ProviderFailure] = []
    for index, provider in enumerate(providers):
        try:
            raise_if_cancelled(cancel_event, f"provider {provider.name}")
            result = _run_provider(
                provider,
                normalized,
                config,
                fallback_used=index > 0,
                cancel_event=cancel_event,
                correlation_id=correlation_id,
            )
        except RequestCancelledError as exc:
            logger.warning(
                "Ingest cancelled | correlation_id=%s | provider=%s | attempted=%d",
                correlation_id,
                provider.name,
                len(failures),
            )
            return RequestCancelled(failures=tuple(failures), message=exc.message)
        except (PipelineError, httpx.HTTPError) as exc:
            failure = _failure_from(provider.name, exc)
            failures.append(failure)
            logger.warning(
                "Provider attempt failed | correlation_id=%s | provider=%s | code=%s | error=%s",
                correlation_id,
                provider.name,
                failure.code,
                failure.message,
            )
            continue
        except Exception as exc:
            logger.exception(
                "Provider attempt crashed | correlation_id=%s | provider=%s",
                correlation_id,
                provider.name,
            )
            failures.append(ProviderFailure(provider.name, UNEXPECTED_ERROR_CODE, str(exc)))
            continue

        if cache is not None:
            cache.set(cache_key, result)
        return IngestSuccess(result=result)

    logger.error(
        "All providers failed | correlation_id=%s | attempts=%d | codes=%s",
        correlation_id,
        len(failures),
        ",".join(f.code for f in failures),
    )
    return AllProvidersFailed(failures=tuple(failures))


def _run_provider(
    provider: SceneProvider,
    request: NormalizedIngestRequest,
    config: IngestConfig,
    *,
    fallback_used: bool,
    cancel_event: threading.Event | None,
    correlation_id: str,
) -> IngestResult:
    """One provider attempt: search, select, fetch and finalize."""
    started = time.monotonic()
    logger.info(
        "Provider attempt started | correlation_id=%s | provider=%s | fallback=%s",
        correlation_id,
        provider.name,
        fallback_used,
    )

    scenes = provider.search(request, cancel_event=cancel_event)
    scene = pick_best_scene(
        scenes,
        request.policy,
        required_assets=provider.required_assets,
        window=(request.date_from, request.date_to),
    )
    if scene is None:
        msg = (
            f"No scene with bands {','.join(provider.required_assets) or 'any'} "
            f"among {len(scenes)} candidates for {request.datetime_range}"
        )
        raise NoImageryFoundError(provider.name, msg)

    width, height = raster_dimensions(request.bbox, request.target_size)
    raise_if_cancelled(cancel_event, f"fetching bands from {provider.name}")
    bands = provider.fetch_bands(scene, request, width, height, cancel_event=cancel_event)
    raise_if_cancelled(cancel_event, "finalizing result")

    result = finalize_result(
        provider=provider.name,
        fallback_used=fallback_used,
        scene=scene,
        bands=bands,
        request=request,
        config=config,
        warnings=[FALLBACK_WARNING] if fallback_used else None,
    )
    logger.info(
        "Provider attempt succeeded | correlation_id=%s | provider=%s | scene=%s | "
        "raster=%dx%d | valid_ratio=%.4f | duration=%.2fs",
        correlation_id,
        provider.name,
        scene.scene_id,
        width,
        height,
        result.ndvi.valid_pixel_ratio,
        time.monotonic() - started,
    )
    return result


def _failure_from(provider: str, exc: Exception) -> ProviderFailure:
    if isinstance(exc, PipelineError):
        return ProviderFailure(provider, exc.code or type(exc).__name__, exc.message or str(exc))
    if isinstance(exc, httpx.TimeoutException):
        return ProviderFailure(provider, f"{provider}_timeout", str(exc) or "Request timed out")
    return ProviderFailure(provider, f"{provider}_network_error", str(exc) or type(exc).__name__)
