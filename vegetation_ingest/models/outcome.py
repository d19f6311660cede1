"""Ingest outcome sum type.

``ingest()`` never raises for expected failures; it returns one of:

- ``IngestSuccess``: a complete ``IngestResult``.
- ``ValidationFailure``: the request was rejected before any network call.
- ``AllProvidersFailed``: every provider was attempted and failed; the
  failures are kept in attempt order.
- ``RequestCancelled``: the caller aborted the request.

Callers dispatch with ``isinstance`` (or ``match``) instead of catching.
Every failure variant renders the ``{error, message, providers}`` payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from vegetation_ingest.models.imagery import ProviderFailure
from vegetation_ingest.models.result import ErrorPayload, IngestResult, ProviderFailureInfo

ALL_PROVIDERS_FAILED = "all_providers_failed"
REQUEST_CANCELLED = "request_cancelled"


@dataclass(frozen=True, slots=True)
class IngestSuccess:
    result: IngestResult

    @property
    def warnings(self) -> list[str]:
        return self.result.warnings


@dataclass(frozen=True, slots=True)
class ValidationFailure:
    """The request was malformed (``bbox_required`` / ``invalid_geometry``)."""

    code: str
    message: str

    def to_error_payload(self) -> ErrorPayload:
        return ErrorPayload(error=self.code, message=self.message)


@dataclass(frozen=True, slots=True)
class AllProvidersFailed:
    """Every configured provider failed; ``failures`` is in attempt order."""

    failures: tuple[ProviderFailure, ...] = field(default_factory=tuple)
    message: str = "No satellite providers were able to process this request."

    @property
    def code(self) -> str:
        return ALL_PROVIDERS_FAILED

    def to_error_payload(self) -> ErrorPayload:
        return ErrorPayload(
            error=ALL_PROVIDERS_FAILED,
            message=self.message,
            providers=[ProviderFailureInfo(**f.to_dict()) for f in self.failures],
        )


@dataclass(frozen=True, slots=True)
class RequestCancelled:
    """The caller cancelled the request; failures seen so far are kept."""

    failures: tuple[ProviderFailure, ...] = field(default_factory=tuple)
    message: str = "The ingest request was cancelled."

    @property
    def code(self) -> str:
        return REQUEST_CANCELLED

    def to_error_payload(self) -> ErrorPayload:
        return ErrorPayload(
            error=REQUEST_CANCELLED,
            message=self.message,
            providers=[ProviderFailureInfo(**f.to_dict()) for f in self.failures],
        )


IngestFailure = ValidationFailure | AllProvidersFailed | RequestCancelled
IngestOutcome = IngestSuccess | IngestFailure
