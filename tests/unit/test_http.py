"""Tests for the retrying HTTP helper.

Uses ``httpx.MockTransport`` so no socket is opened, and patches
``time.sleep`` so backoff does not slow the suite.
"""

from __future__ import annotations

import json
import threading
import time
from unittest.mock import patch

import httpx
import pytest

from vegetation_ingest.core.http import (
    RequestCancelledError,
    raise_if_cancelled,
    request_with_retry,
)

URL = "https://provider.test/search"


def _client(responses: list[httpx.Response | Exception]) -> tuple[httpx.Client, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        item = responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return httpx.Client(transport=httpx.MockTransport(handler)), seen


@patch("vegetation_ingest.core.http.time.sleep")
class TestRequestWithRetry:
    def test_success_first_attempt(self, mock_sleep) -> None:
        client, seen = _client([httpx.Response(200, json={"ok": True})])
        response = request_with_retry(client, "GET", URL, retries=2)
        assert response.status_code == 200
        assert len(seen) == 1
        mock_sleep.assert_not_called()

    def test_retries_server_error_then_succeeds(self, mock_sleep) -> None:
        client, seen = _client([httpx.Response(503), httpx.Response(200)])
        response = request_with_retry(client, "GET", URL, retries=1, backoff_s=0.35)
        assert response.status_code == 200
        assert len(seen) == 2
        mock_sleep.assert_called_once_with(0.35)

    def test_returns_last_response_when_budget_exhausted(self, mock_sleep) -> None:
        client, seen = _client([httpx.Response(429), httpx.Response(429), httpx.Response(429)])
        response = request_with_retry(client, "GET", URL, retries=2, backoff_s=0.1)
        assert response.status_code == 429
        assert len(seen) == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == pytest.approx([0.1, 0.2])

    def test_client_error_not_retried(self, mock_sleep) -> None:
        client, seen = _client([httpx.Response(404)])
        assert request_with_retry(client, "GET", URL, retries=2).status_code == 404
        assert len(seen) == 1

    def test_transport_error_retried(self, mock_sleep) -> None:
        client, seen = _client([httpx.ConnectError("refused"), httpx.Response(200)])
        assert request_with_retry(client, "GET", URL, retries=1).status_code == 200
        assert len(seen) == 2

    def test_timeout_raised_after_budget(self, mock_sleep) -> None:
        client, _ = _client([httpx.ReadTimeout("slow"), httpx.ReadTimeout("slow")])
        with pytest.raises(httpx.TimeoutException):
            request_with_retry(client, "GET", URL, retries=1)

    def test_cancelled_before_first_attempt(self, mock_sleep) -> None:
        client, seen = _client([httpx.Response(200)])
        event = threading.Event()
        event.set()
        with pytest.raises(RequestCancelledError):
            request_with_retry(client, "GET", URL, cancel_event=event)
        assert seen == []

    def test_kwargs_forwarded(self, mock_sleep) -> None:
        client, seen = _client([httpx.Response(200)])
        request_with_retry(client, "POST", URL, json={"limit": 16})
        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"limit": 16}


class TestRaiseIfCancelled:
    def test_none_event(self) -> None:
        raise_if_cancelled(None, "anything")

    def test_unset_event(self) -> None:
        raise_if_cancelled(threading.Event(), "anything")

    def test_set_event(self) -> None:
        event = threading.Event()
        event.set()
        with pytest.raises(RequestCancelledError, match="before search"):
            raise_if_cancelled(event, "search")


@patch("vegetation_ingest.core.http.time.sleep")
class TestCancellationDuringBackoff:
    def test_backoff_waits_on_event(self, mock_sleep) -> None:
        client, seen = _client([httpx.Response(503), httpx.Response(200)])
        response = request_with_retry(
            client, "GET", URL, retries=1, backoff_s=0.01, cancel_event=threading.Event()
        )
        assert response.status_code == 200
        assert len(seen) == 2
        mock_sleep.assert_not_called()

    def test_event_set_during_backoff_stops_retry(self, mock_sleep) -> None:
        client, seen = _client([httpx.Response(503), httpx.Response(200)])
        event = threading.Event()
        timer = threading.Timer(0.05, event.set)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(RequestCancelledError):
                request_with_retry(client, "GET", URL, retries=1, backoff_s=30.0, cancel_event=event)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 10
        assert len(seen) == 1
