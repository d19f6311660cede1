"""Pipeline configuration loaded from environment variables.

All configuration values have sensible defaults. App settings (or
``local.settings.json`` for local dev) are the source of truth when the
pipeline is hosted behind ``function_app.py``.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any numeric
    value is out of its valid range, so bad configuration surfaces at
    startup instead of in the middle of a request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from vegetation_ingest.core.constants import (
    DEFAULT_FETCH_TIMEOUT_S,
    DEFAULT_HTTP_RETRIES,
    DEFAULT_LOOKBACK_DAYS,
    DEFAULT_MIN_SIGNAL,
    DEFAULT_PROVIDER_ORDER,
    DEFAULT_RETRY_BACKOFF_S,
    DEFAULT_TRANSPORT_SIZE,
    MAX_HTTP_RETRIES,
    MAX_TARGET_SIZE,
)
from vegetation_ingest.core.exceptions import PipelineError
from vegetation_ingest.processing.grid import StressPolicy


class ConfigValidationError(PipelineError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class IngestConfig:
    """Immutable ingestion configuration.

    Loaded once at startup and threaded through the orchestrator.

    Attributes:
        provider_order: Provider names in the fixed order they are attempted.
        fetch_timeout_s: Timeout applied to every outbound HTTP call.
        http_retries: Extra attempts for transient HTTP failures (0-2).
        retry_backoff_s: Linear backoff step between retry attempts.
        transport_size: Longest side of the downsampled transport grid.
        lookback_days: Default date window when the request has none.
        min_signal: Minimum ``num + den`` reflectance for a valid index pixel.
        stress_policy: Thresholds used to classify 3x3 grid cells.
        low_valid_ratio_warning: Valid-pixel ratio below which a warning
            is attached to the result.
        planetary_stac_url: Planetary Computer STAC API root.
        planetary_data_url: Planetary Computer data (tiler) API root.
        sentinel_client_id: Sentinel Hub OAuth client id.
        sentinel_client_secret: Sentinel Hub OAuth client secret.
    """

    provider_order: tuple[str, ...] = DEFAULT_PROVIDER_ORDER
    fetch_timeout_s: float = DEFAULT_FETCH_TIMEOUT_S
    http_retries: int = DEFAULT_HTTP_RETRIES
    retry_backoff_s: float = DEFAULT_RETRY_BACKOFF_S
    transport_size: int = DEFAULT_TRANSPORT_SIZE
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    min_signal: float = DEFAULT_MIN_SIGNAL
    stress_policy: StressPolicy = field(default_factory=StressPolicy)
    low_valid_ratio_warning: float = 0.45
    planetary_stac_url: str = ""
    planetary_data_url: str = ""
    sentinel_client_id: str = ""
    sentinel_client_secret: str = ""

    @classmethod
    def from_env(cls) -> IngestConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a numeric value is out of range
                or the provider list is empty.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``INGEST_HTTP_RETRIES=abc``).
        """
        order_raw = os.getenv("INGEST_PROVIDERS", ",".join(DEFAULT_PROVIDER_ORDER))
        config = cls(
            provider_order=tuple(p.strip() for p in order_raw.split(",") if p.strip()),
            fetch_timeout_s=float(os.getenv("INGEST_FETCH_TIMEOUT_S", "25")),
            http_retries=int(os.getenv("INGEST_HTTP_RETRIES", "1")),
            retry_backoff_s=float(os.getenv("INGEST_RETRY_BACKOFF_S", "0.35")),
            transport_size=int(os.getenv("INGEST_TRANSPORT_SIZE", "256")),
            lookback_days=int(os.getenv("INGEST_LOOKBACK_DAYS", "45")),
            min_signal=float(os.getenv("INGEST_MIN_SIGNAL", "0.005")),
            stress_policy=StressPolicy(
                unknown_below=float(os.getenv("STRESS_UNKNOWN_BELOW", "0.1")),
                high_below=float(os.getenv("STRESS_HIGH_BELOW", "0.28")),
                moderate_below=float(os.getenv("STRESS_MODERATE_BELOW", "0.42")),
            ),
            low_valid_ratio_warning=float(os.getenv("LOW_VALID_RATIO_WARNING", "0.45")),
            planetary_stac_url=os.getenv("PLANETARY_STAC_URL", ""),
            planetary_data_url=os.getenv("PLANETARY_DATA_URL", ""),
            sentinel_client_id=os.getenv("SENTINEL_HUB_CLIENT_ID", ""),
            sentinel_client_secret=os.getenv("SENTINEL_HUB_CLIENT_SECRET", ""),
        )
        _validate(config)
        return config


def _validate(config: IngestConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if not config.provider_order:
        raise ConfigValidationError(
            "INGEST_PROVIDERS",
            config.provider_order,
            "must name at least one provider",
        )

    if config.fetch_timeout_s <= 0:
        raise ConfigValidationError(
            "INGEST_FETCH_TIMEOUT_S",
            config.fetch_timeout_s,
            "must be > 0 (seconds)",
        )

    if not 0 <= config.http_retries <= MAX_HTTP_RETRIES:
        raise ConfigValidationError(
            "INGEST_HTTP_RETRIES",
            config.http_retries,
            f"must be between 0 and {MAX_HTTP_RETRIES}",
        )

    if config.retry_backoff_s < 0:
        raise ConfigValidationError(
            "INGEST_RETRY_BACKOFF_S",
            config.retry_backoff_s,
            "must be >= 0 (seconds)",
        )

    if not 2 <= config.transport_size <= MAX_TARGET_SIZE:
        raise ConfigValidationError(
            "INGEST_TRANSPORT_SIZE",
            config.transport_size,
            f"must be between 2 and {MAX_TARGET_SIZE} (pixels)",
        )

    if config.lookback_days <= 0:
        raise ConfigValidationError(
            "INGEST_LOOKBACK_DAYS",
            config.lookback_days,
            "must be > 0 (days)",
        )

    if config.min_signal < 0:
        raise ConfigValidationError(
            "INGEST_MIN_SIGNAL",
            config.min_signal,
            "must be >= 0 (reflectance)",
        )

    policy = config.stress_policy
    if not 0.0 <= policy.unknown_below <= 1.0:
        raise ConfigValidationError(
            "STRESS_UNKNOWN_BELOW",
            policy.unknown_below,
            "must be between 0 and 1 (ratio)",
        )

    if policy.high_below > policy.moderate_below:
        raise ConfigValidationError(
            "STRESS_HIGH_BELOW",
            policy.high_below,
            f"must be <= STRESS_MODERATE_BELOW ({policy.moderate_below})",
        )

    if not 0.0 <= config.low_valid_ratio_warning <= 1.0:
        raise ConfigValidationError(
            "LOW_VALID_RATIO_WARNING",
            config.low_valid_ratio_warning,
            "must be between 0 and 1 (ratio)",
        )
