"""Azure Functions entry point — Vegetation Index Ingestion.

This module registers the HTTP function using the Python v2 programming
model.  The decorated trigger delegates to ``handle_ingest`` so the
request handling can be exercised without the Functions host.

All business logic lives in the vegetation_ingest package. This file is
purely the wiring layer between the HTTP binding and ``ingest()``.
"""

from __future__ import annotations

import functools
import json
import logging

import azure.functions as func

from vegetation_ingest.core.config import IngestConfig
from vegetation_ingest.models.outcome import (
    AllProvidersFailed,
    IngestSuccess,
    RequestCancelled,
    ValidationFailure,
)
from vegetation_ingest.orchestrators.ingest_pipeline import ingest

app = func.FunctionApp(http_auth_level=func.AuthLevel.ANONYMOUS)

logger = logging.getLogger("vegetation_ingest.function_app")

STATUS_CLIENT_CLOSED_REQUEST = 499


@functools.lru_cache(maxsize=1)
def _config() -> IngestConfig:
    """Load configuration once per worker process."""
    return IngestConfig.from_env()


def _json_response(body: dict[str, object], status_code: int) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(body),
        status_code=status_code,
        mimetype="application/json",
    )


# ---------------------------------------------------------------------------
# HTTP: POST /api/ingest
# ---------------------------------------------------------------------------


@app.function_name("ingest")
@app.route(route="ingest", methods=["POST"])
def ingest_http(req: func.HttpRequest) -> func.HttpResponse:
    return handle_ingest(req)


def handle_ingest(req: func.HttpRequest) -> func.HttpResponse:
    """Run the ingestion pipeline for one bbox/polygon request.

    Status codes:
        200: ``{success: true, data}``; warnings travel in ``data.warnings``
        400: request validation failed (``bbox_required``, ``invalid_geometry``
             or ``invalid_date``)
        499: request cancelled
        502: every provider failed (``all_providers_failed``)
        500: configuration or unexpected error
    """
    correlation_id = req.headers.get("x-correlation-id", "") or req.headers.get(
        "x-ms-client-request-id", ""
    )

    try:
        payload = req.get_json()
    except ValueError:
        return _json_response(
            {"error": "invalid_json", "message": "Request body must be a JSON object."},
            400,
        )
    if not isinstance(payload, dict):
        return _json_response(
            {"error": "invalid_json", "message": "Request body must be a JSON object."},
            400,
        )

    try:
        outcome = ingest(payload, config=_config(), correlation_id=correlation_id)
    except Exception:
        logger.exception("Ingest crashed | correlation_id=%s", correlation_id)
        return _json_response(
            {"error": "internal_error", "message": "Unexpected error while ingesting imagery."},
            500,
        )

    if isinstance(outcome, IngestSuccess):
        return _json_response(
            {"success": True, "data": outcome.result.to_dict()},
            200,
        )

    if isinstance(outcome, ValidationFailure):
        status = 400
    elif isinstance(outcome, RequestCancelled):
        status = STATUS_CLIENT_CLOSED_REQUEST
    elif isinstance(outcome, AllProvidersFailed):
        status = 502
    else:
        status = 500

    logger.info(
        "Ingest failed | correlation_id=%s | code=%s | status=%d",
        correlation_id,
        outcome.code,
        status,
    )
    return _json_response(outcome.to_error_payload().to_dict(), status)
