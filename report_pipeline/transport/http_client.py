# report_pipeline/transport/http_client.py
#
# Blocking HTTP execution with bounded fixed-delay retry.
#
# Design decisions:
#   - Retry policy and error semantics are kept apart: this module only
#     decides whether to try again. It returns the last HttpOutcome when the
#     budget runs out on a status code; judging success or failure is the
#     response classifier's job.
#   - Transient = 429, 500, 502, 503, 504, plus network failures
#     (httpx.TransportError: refused connections, timeouts). Everything else
#     is returned immediately, success or not.
#   - max_retries is the total attempt budget, the delay is fixed (not
#     exponential), so the worst-case wall-clock is bounded by
#     retry_delay * max_retries plus the per-attempt timeouts.
#   - The retry loop is a tenacity Retrying object. `sleep` and `transport`
#     are injectable so tests run without the network or real delays.
#   - If the budget runs out on a network failure there is no outcome to
#     return, so TransportError is raised with the last cause attached.
from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from report_pipeline.config import RetryPolicy
from report_pipeline.errors import TransportError
from report_pipeline.log import warn

TRANSIENT_STATUSES: frozenset[int] = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class HttpOutcome:
    status_code: int
    body: bytes
    attempt_count: int

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


def is_transient(outcome: HttpOutcome) -> bool:
    return outcome.status_code in TRANSIENT_STATUSES


class ResilientHttpClient:
    """Send one logical request, retrying transient failures.

    Args:
        policy:    Retry budget, delay and timeouts.
        transport: Optional httpx transport (httpx.MockTransport in tests).
        sleep:     Function used for the delay between attempts.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if policy.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.policy = policy
        self._transport = transport
        self._sleep = sleep

    def _client(self, proxy: str | None) -> httpx.Client:
        timeout = httpx.Timeout(self.policy.total_timeout, connect=self.policy.connect_timeout)
        if self._transport is not None:
            return httpx.Client(timeout=timeout, transport=self._transport)
        return httpx.Client(timeout=timeout, proxy=proxy)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        attempt = retry_state.attempt_number
        budget = self.policy.max_retries
        if retry_state.outcome is not None and retry_state.outcome.failed:
            reason = f"network error: {retry_state.outcome.exception()}"
        elif retry_state.outcome is not None:
            reason = f"status {retry_state.outcome.result().status_code}"
        else:
            reason = "unknown failure"
        warn(f"Received {reason}, attempt {attempt} of {budget}; retrying in {self.policy.retry_delay:g}s")

    @staticmethod
    def _give_up(retry_state: RetryCallState) -> HttpOutcome:
        outcome = retry_state.outcome
        if outcome is None:
            raise TransportError(
                f"Request gave up after {retry_state.attempt_number} attempts without an outcome",
                {"attempts": retry_state.attempt_number},
            )
        if outcome.failed:
            cause = outcome.exception()
            raise TransportError(
                f"Request failed after {retry_state.attempt_number} attempts: {cause}",
                {"attempts": retry_state.attempt_number},
            ) from cause
        return outcome.result()

    def execute(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
        proxy: str | None = None,
    ) -> HttpOutcome:
        """Perform the request and return the final outcome.

        Raises:
            TransportError: every attempt failed at the network level.
        """
        request_headers = {"Content-Type": "application/json", **headers}
        if proxy:
            request_headers["Proxy-Connection"] = "keep-alive"

        retrying = Retrying(
            stop=stop_after_attempt(self.policy.max_retries),
            wait=wait_fixed(self.policy.retry_delay),
            retry=retry_if_result(is_transient) | retry_if_exception_type(httpx.TransportError),
            before_sleep=self._log_retry,
            retry_error_callback=self._give_up,
            sleep=self._sleep,
        )

        attempts = 0

        with self._client(proxy) as client:

            def attempt() -> HttpOutcome:
                nonlocal attempts
                attempts += 1
                response = client.request(method, url, headers=request_headers, content=body)
                return HttpOutcome(status_code=response.status_code, body=response.content, attempt_count=attempts)

            try:
                return retrying(attempt)
            except httpx.HTTPError as exc:
                # Non-transient client errors (redirect loops, decoding) are not retried.
                raise TransportError(f"Request to {url} failed: {exc}", {"attempts": attempts}) from exc
