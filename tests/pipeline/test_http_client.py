# tests/pipeline/test_http_client.py
#
# Tests for ResilientHttpClient's bounded fixed-delay retry.
#
# Strategy: an httpx.MockTransport replays a scripted sequence of statuses
# (or network failures) and a recording sleep function captures every delay,
# so the tests assert on attempt counts and sleeps without waiting.
from __future__ import annotations

import json

import httpx
import pytest
from tenacity import RetryCallState, Retrying

from report_pipeline.config import RetryPolicy
from report_pipeline.errors import TransportError
from report_pipeline.transport.http_client import HttpOutcome, ResilientHttpClient, is_transient

_URL = "https://api.example.com/data/api123"


class _Script:
    """MockTransport handler answering with the next scripted step."""

    def __init__(self, steps: list[int | Exception]) -> None:
        self.steps = list(steps)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step, json={"status": step})


def _client(script: _Script, sleeps: list[float], max_retries: int = 3, delay: float = 5.0) -> ResilientHttpClient:
    return ResilientHttpClient(
        RetryPolicy(max_retries=max_retries, retry_delay=delay),
        transport=httpx.MockTransport(script),
        sleep=sleeps.append,
    )


# ---------------------------------------------------------------------------
# Retry budget
# ---------------------------------------------------------------------------


def test_success_on_first_attempt_never_sleeps() -> None:
    script, sleeps = _Script([200]), []
    outcome = _client(script, sleeps).execute(_URL, "GET", {})
    assert outcome.status_code == 200
    assert outcome.attempt_count == 1
    assert sleeps == []
    assert json.loads(outcome.body) == {"status": 200}


def test_persistent_503_uses_whole_budget() -> None:
    script, sleeps = _Script([503]), []
    outcome = _client(script, sleeps).execute(_URL, "GET", {})
    assert outcome.status_code == 503
    assert outcome.attempt_count == 3
    assert len(script.requests) == 3
    assert sleeps == [5.0, 5.0]


def test_rate_limit_then_success() -> None:
    script, sleeps = _Script([429, 200]), []
    outcome = _client(script, sleeps).execute(_URL, "GET", {})
    assert outcome.status_code == 200
    assert outcome.attempt_count == 2
    assert sleeps == [5.0]


@pytest.mark.parametrize("status", [400, 401, 403, 404, 418])
def test_non_transient_status_is_returned_immediately(status: int) -> None:
    script, sleeps = _Script([status, 200]), []
    outcome = _client(script, sleeps).execute(_URL, "GET", {})
    assert outcome.status_code == status
    assert len(script.requests) == 1
    assert sleeps == []


def test_single_attempt_budget() -> None:
    script, sleeps = _Script([500]), []
    outcome = _client(script, sleeps, max_retries=1).execute(_URL, "GET", {})
    assert outcome.attempt_count == 1
    assert sleeps == []


def test_zero_budget_is_rejected() -> None:
    with pytest.raises(ValueError, match="at least 1"):
        ResilientHttpClient(RetryPolicy(max_retries=0))


# ---------------------------------------------------------------------------
# Network failures
# ---------------------------------------------------------------------------


def test_network_failure_then_success() -> None:
    script, sleeps = _Script([httpx.ConnectError("refused"), 200]), []
    outcome = _client(script, sleeps, delay=1.5).execute(_URL, "GET", {})
    assert outcome.status_code == 200
    assert outcome.attempt_count == 2
    assert sleeps == [1.5]


def test_persistent_network_failure_raises_transport_error() -> None:
    script, sleeps = _Script([httpx.ConnectTimeout("timed out")]), []
    with pytest.raises(TransportError, match="after 3 attempts"):
        _client(script, sleeps).execute(_URL, "GET", {})
    assert len(script.requests) == 3
    assert len(sleeps) == 2


# ---------------------------------------------------------------------------
# Request shape
# ---------------------------------------------------------------------------


def test_headers_and_body_are_sent() -> None:
    script, sleeps = _Script([200]), []
    _client(script, sleeps).execute(_URL, "POST", {"Authorization": "Bearer t"}, b'{"a": 1}')
    request = script.requests[0]
    assert request.method == "POST"
    assert request.headers["Authorization"] == "Bearer t"
    assert request.headers["Content-Type"] == "application/json"
    assert request.content == b'{"a": 1}'


def test_proxied_request_keeps_connection_alive() -> None:
    script, sleeps = _Script([200]), []
    _client(script, sleeps).execute(_URL, "GET", {}, proxy="http://proxy:3128")
    assert script.requests[0].headers["Proxy-Connection"] == "keep-alive"


def test_direct_request_has_no_proxy_header() -> None:
    script, sleeps = _Script([200]), []
    _client(script, sleeps).execute(_URL, "GET", {})
    assert "Proxy-Connection" not in script.requests[0].headers


def test_proxy_url_reaches_the_client(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without an injected transport the proxy URL is handed to httpx.Client."""
    captured: dict[str, object] = {}
    real_client = httpx.Client
    script = _Script([200])

    def fake_client(**kwargs: object) -> httpx.Client:
        captured.update(kwargs)
        return real_client(timeout=kwargs["timeout"], transport=httpx.MockTransport(script))

    monkeypatch.setattr(httpx, "Client", fake_client)
    client = ResilientHttpClient(RetryPolicy(max_retries=1), sleep=lambda _: None)
    client.execute(_URL, "GET", {}, proxy="http://proxy:3128")

    assert captured["proxy"] == "http://proxy:3128"
    assert script.requests[0].headers["Proxy-Connection"] == "keep-alive"


def test_give_up_without_outcome_raises_transport_error() -> None:
    state = RetryCallState(retry_object=Retrying(), fn=None, args=(), kwargs={})
    with pytest.raises(TransportError, match="without an outcome"):
        ResilientHttpClient._give_up(state)


def test_is_transient() -> None:
    assert is_transient(HttpOutcome(502, b"", 1))
    assert not is_transient(HttpOutcome(200, b"", 1))
    assert not is_transient(HttpOutcome(404, b"", 1))
