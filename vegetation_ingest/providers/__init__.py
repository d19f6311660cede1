"""Scene provider adapters.

Implements the provider-agnostic adapter pattern (Strategy pattern):
- SceneProvider: Abstract base class defining the interface
- PlanetaryComputerAdapter: Microsoft Planetary Computer (STAC, free)
- SentinelHubAdapter: Sentinel Hub classic / Copernicus Data Space

The orchestrator tries providers in the configured order, falling back
to the next one when an attempt fails.
"""

from vegetation_ingest.providers.base import (
    NoImageryFoundError,
    ProviderAuthError,
    ProviderError,
    ProviderFetchError,
    ProviderSearchError,
    SceneProvider,
)
from vegetation_ingest.providers.factory import (
    build_providers,
    get_provider,
    list_providers,
    register_provider,
)

__all__ = [
    "NoImageryFoundError",
    "ProviderAuthError",
    "ProviderError",
    "ProviderFetchError",
    "ProviderSearchError",
    "SceneProvider",
    "build_providers",
    "get_provider",
    "list_providers",
    "register_provider",
]
