"""Provider factory — builds scene providers by name.

The factory maintains a registry of known adapters.  New adapters are
registered by adding an entry to ``_ADAPTER_REGISTRY`` or at runtime via
``register_provider``.

Usage::

    from vegetation_ingest.providers.factory import build_providers

    providers = build_providers(IngestConfig.from_env())
    scenes = providers[0].search(request)

``build_providers`` returns the providers in the configured priority
order (``INGEST_PROVIDERS``), which is the order the orchestrator tries
them in.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vegetation_ingest.core.constants import PLANETARY_COMPUTER, SENTINEL_HUB
from vegetation_ingest.models.imagery import ProviderConfig
from vegetation_ingest.providers.base import ProviderError, SceneProvider

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from vegetation_ingest.core.config import IngestConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lazy-import adapter registry
# ---------------------------------------------------------------------------

# Each entry maps a provider name to a callable that returns the adapter
# *class*, so provider dependencies load only when that adapter is used.

_ADAPTER_REGISTRY: dict[str, Callable[[], type[SceneProvider]]] = {}


def _register_builtin_adapters() -> None:
    """Register the built-in provider adapters."""

    def _planetary_computer() -> type[SceneProvider]:
        from vegetation_ingest.providers.planetary_computer import PlanetaryComputerAdapter

        return PlanetaryComputerAdapter

    def _sentinel_hub() -> type[SceneProvider]:
        from vegetation_ingest.providers.sentinel_hub import SentinelHubAdapter

        return SentinelHubAdapter

    _ADAPTER_REGISTRY[PLANETARY_COMPUTER] = _planetary_computer
    _ADAPTER_REGISTRY[SENTINEL_HUB] = _sentinel_hub


def _ensure_registry() -> None:
    """Initialise the adapter registry once (idempotent)."""
    if not _ADAPTER_REGISTRY:
        _register_builtin_adapters()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def register_provider(
    name: str,
    loader: Callable[[], type[SceneProvider]],
) -> None:
    """Register a custom provider adapter.

    Args:
        name: Provider name (e.g. ``"my_custom_provider"``).
        loader: A zero-argument callable that returns the adapter class.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Provider name must be non-empty"
        raise ValueError(msg)
    _ensure_registry()
    _ADAPTER_REGISTRY[name] = loader
    logger.debug("Registered provider adapter: %s", name)


def get_provider(
    name: str,
    config: ProviderConfig | None = None,
    *,
    client: httpx.Client | None = None,
) -> SceneProvider:
    """Create and return a scene provider instance.

    Args:
        name: Provider identifier (e.g. ``"planetary_computer"``).
        config: Optional ``ProviderConfig``.  If ``None``, a default config
            with just the provider name is used.
        client: Optional shared ``httpx.Client`` for the adapter.

    Raises:
        ProviderError: If the named provider is not registered or the
            config name does not match.
    """
    _ensure_registry()

    loader = _ADAPTER_REGISTRY.get(name)
    if loader is None:
        available = ", ".join(sorted(_ADAPTER_REGISTRY))
        msg = f"Unknown imagery provider: {name!r}. Available: {available}"
        raise ProviderError(provider=name, message=msg, code="unknown_provider")

    adapter_cls = loader()

    if config is None:
        config = ProviderConfig(name=name)
    elif config.name != name:
        msg = f"ProviderConfig.name {config.name!r} does not match requested provider {name!r}"
        raise ProviderError(provider=name, message=msg, code="provider_config_mismatch")

    logger.debug("Creating scene provider: %s", name)
    return adapter_cls(config, client=client)


def list_providers() -> list[str]:
    """Return the names of all registered provider adapters."""
    _ensure_registry()
    return sorted(_ADAPTER_REGISTRY)


def provider_config_for(name: str, config: IngestConfig) -> ProviderConfig:
    """Derive one provider's ``ProviderConfig`` from the ingest config."""
    extra_params: dict[str, str] = {}
    api_base_url = ""
    if name == PLANETARY_COMPUTER:
        api_base_url = config.planetary_stac_url
        if config.planetary_data_url:
            extra_params["data_url"] = config.planetary_data_url
    elif name == SENTINEL_HUB:
        extra_params["client_id"] = config.sentinel_client_id
        extra_params["client_secret"] = config.sentinel_client_secret

    return ProviderConfig(
        name=name,
        api_base_url=api_base_url,
        timeout_s=config.fetch_timeout_s,
        retries=config.http_retries,
        retry_backoff_s=config.retry_backoff_s,
        extra_params=extra_params,
    )


def build_providers(
    config: IngestConfig,
    *,
    client: httpx.Client | None = None,
) -> list[SceneProvider]:
    """Build every configured provider, in priority order.

    Raises:
        ProviderError: If the configuration names an unknown provider.
    """
    return [
        get_provider(name, provider_config_for(name, config), client=client)
        for name in config.provider_order
    ]
