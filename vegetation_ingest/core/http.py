"""Timeout-bounded HTTP calls with a small, bounded retry budget.

Provider adapters issue every outbound request through
``request_with_retry``.  Only throttling, server errors and timeouts are
retried, at most ``retries`` extra times with a short linear backoff.
Anything else (4xx, decode errors) is returned or raised immediately so
the orchestrator can fall back to the next provider.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from vegetation_ingest.core.constants import (
    DEFAULT_HTTP_RETRIES,
    DEFAULT_RETRY_BACKOFF_S,
)
from vegetation_ingest.core.exceptions import TransientError

if TYPE_CHECKING:
    import threading

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429, 500, 502, 503, 504})


class RequestCancelledError(TransientError):
    """Raised when the caller aborted the request before a call completed."""

    default_stage = "http"
    default_code = "request_cancelled"


def raise_if_cancelled(cancel_event: threading.Event | None, context: str) -> None:
    """Raise ``RequestCancelledError`` if *cancel_event* is set."""
    if cancel_event is not None and cancel_event.is_set():
        msg = f"Request cancelled before {context}"
        raise RequestCancelledError(msg)


def _backoff(delay: float, cancel_event: threading.Event | None) -> None:
    """Sleep *delay* seconds, waking early if *cancel_event* is set."""
    if cancel_event is None:
        time.sleep(delay)
    else:
        cancel_event.wait(delay)


def request_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    retries: int = DEFAULT_HTTP_RETRIES,
    backoff_s: float = DEFAULT_RETRY_BACKOFF_S,
    cancel_event: threading.Event | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying transient failures.

    Args:
        client: The ``httpx.Client`` carrying the timeout configuration.
        method: HTTP method.
        url: Absolute request URL.
        retries: Extra attempts for retryable statuses and timeouts.
        backoff_s: Linear backoff step; attempt *n* waits ``backoff_s * n``.
        cancel_event: Optional event; when set, no further attempt is made
            and a pending backoff wait ends immediately.
        **kwargs: Forwarded to ``client.request``.

    Returns:
        The last ``httpx.Response``.  Non-2xx responses are returned, not
        raised; callers map the status to their own error codes.

    Raises:
        RequestCancelledError: If *cancel_event* is set.
        httpx.TimeoutException: If the final attempt timed out.
        httpx.TransportError: If the final attempt failed at transport level.
    """
    attempt = 0
    while True:
        raise_if_cancelled(cancel_event, f"{method} {url}")

        try:
            response = client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            if attempt < retries:
                attempt += 1
                logger.warning(
                    "HTTP transport error, retrying | method=%s | url=%s | attempt=%d | error=%s",
                    method,
                    url,
                    attempt,
                    exc,
                )
                _backoff(backoff_s * attempt, cancel_event)
                continue
            raise

        if response.status_code in RETRYABLE_STATUS_CODES and attempt < retries:
            attempt += 1
            logger.warning(
                "HTTP %d, retrying | method=%s | url=%s | attempt=%d",
                response.status_code,
                method,
                url,
                attempt,
            )
            _backoff(backoff_s * attempt, cancel_event)
            continue

        return response
