"""Shared pipeline constants — single source of truth.

Centralises provider names, request defaults and the numeric limits
that the request normaliser, the adapters and the finaliser agree on.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Provider names
# ---------------------------------------------------------------------------

PLANETARY_COMPUTER: str = "planetary_computer"
SENTINEL_HUB: str = "sentinel_hub"

DEFAULT_PROVIDER_ORDER: tuple[str, ...] = (PLANETARY_COMPUTER, SENTINEL_HUB)
"""Fixed priority order in which providers are attempted."""

# ---------------------------------------------------------------------------
# Spatial reference
# ---------------------------------------------------------------------------

WGS84_CRS: str = "EPSG:4326"

METRES_PER_DEGREE_LAT: float = 111_320.0
"""Equirectangular approximation; longitude is scaled by ``cos(mid_lat)``."""

SENTINEL2_NATIVE_RESOLUTION_M: float = 10.0

# ---------------------------------------------------------------------------
# Request defaults
# ---------------------------------------------------------------------------

DEFAULT_LOOKBACK_DAYS: int = 45
MIN_TARGET_SIZE: int = 128
MAX_TARGET_SIZE: int = 1024
DEFAULT_TRANSPORT_SIZE: int = 256

# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

DEFAULT_FETCH_TIMEOUT_S: float = 25.0
DEFAULT_HTTP_RETRIES: int = 1
MAX_HTTP_RETRIES: int = 2
DEFAULT_RETRY_BACKOFF_S: float = 0.35

# ---------------------------------------------------------------------------
# Index computation
# ---------------------------------------------------------------------------

DEFAULT_MIN_SIGNAL: float = 0.005
MAX_VALID_REFLECTANCE: float = 1.5
RAW_DN_THRESHOLD: float = 2.0
"""Samples above this are raw digital numbers rather than reflectance."""
REFLECTANCE_SCALE: float = 10_000.0
MAJORITY_VALID_FRACTION: float = 0.5
