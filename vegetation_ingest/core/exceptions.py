"""Unified pipeline exception taxonomy.

Every domain exception inherits from ``PipelineError`` and carries
structured context fields that drive the orchestrator's fallback
decisions and the error payload returned to callers.

Taxonomy categories
-------------------
- ``ValidationError``   — malformed request input, never retryable and
  never subject to provider fallback.
- ``TransientError``    — temporary failures (network, throttle), retryable.
- ``PermanentError``    — unrecoverable raster/decode failures.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for all pipeline-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Pipeline stage where the error occurred
            (e.g. ``"normalize"``, ``"decode"``).
        code: Machine-readable error code (e.g. ``"bbox_required"``).
        retryable: Whether a retry could plausibly succeed.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        super().__init__(message)


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(PipelineError):
    """Input or domain-model validation failure. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(PipelineError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(PipelineError):
    """Unrecoverable domain failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------


class BBoxRequiredError(ValidationError):
    """The bounding box is missing, malformed or has zero/negative extent."""

    default_stage = "normalize"
    default_code = "bbox_required"


class InvalidGeometryError(ValidationError):
    """An AOI polygon was supplied but could not be parsed into a ring."""

    default_stage = "normalize"
    default_code = "invalid_geometry"


class InvalidDateError(ValidationError):
    """The date window is present but is not a ``"from/to"`` string."""

    default_stage = "normalize"
    default_code = "invalid_date"


# ---------------------------------------------------------------------------
# Raster decoding
# ---------------------------------------------------------------------------


class RasterDecodeError(PermanentError):
    """Raw GeoTIFF bytes could not be opened or read."""

    default_stage = "decode"
    default_code = "raster_decode_failed"


class BandDimensionMismatchError(PermanentError):
    """Bands that compose one index do not share width/height."""

    default_stage = "decode"
    default_code = "band_dimension_mismatch"


class ReflectanceCubeError(PermanentError):
    """A reflectance cube carries fewer samples per pixel than required."""

    default_stage = "decode"
    default_code = "reflectance_cube_missing_bands"
