"""
test_recovery.py - Error classification and retry with backoff
"""

from __future__ import annotations

import pytest

from omni_pilot.core.cancel import CancellationToken
from omni_pilot.core.errors import (
    AuthError,
    ConfigError,
    NetworkError,
    QuotaError,
    RateLimitedError,
    RequestError,
    RunStopped,
)
from omni_pilot.core.recovery import (
    ErrorKind,
    RetryPolicy,
    classify_capture_error,
    classify_error,
    retry_with_policy,
)

QUICK = RetryPolicy(max_retries=3, initial_delay_ms=1, max_delay_ms=5, jitter=0)


class Flaky:
    """Async operation that fails a fixed number of times, then succeeds."""

    def __init__(self, failures: list[Exception], result: str = "ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class TestClassifyError:
    """Tests for retryable / rate limited / fatal decisions."""

    @pytest.mark.parametrize(
        "error, kind",
        [
            (NetworkError("connection reset"), ErrorKind.RETRYABLE),
            (TimeoutError(), ErrorKind.RETRYABLE),
            (ConnectionError("refused"), ErrorKind.RETRYABLE),
            (RateLimitedError("slow down", wait_seconds=4), ErrorKind.RATE_LIMITED),
            (AuthError("bad key", status_code=401), ErrorKind.FATAL),
            (QuotaError("no credit"), ErrorKind.FATAL),
            (RequestError("bad request", status_code=400), ErrorKind.FATAL),
            (ConfigError("missing"), ErrorKind.FATAL),
            (ValueError("something else"), ErrorKind.FATAL),
            (RuntimeError("server overloaded"), ErrorKind.RATE_LIMITED),
            (RuntimeError("request timed out"), ErrorKind.RETRYABLE),
        ],
    )
    def test_kinds(self, error, kind):
        """Should map each error onto its class."""
        assert classify_error(error).kind is kind

    def test_status_codes(self):
        """Should read status codes from errors that carry them."""

        class HTTPFailure(Exception):
            def __init__(self, status_code):
                super().__init__(f"HTTP {status_code}")
                self.status_code = status_code

        assert classify_error(HTTPFailure(503)).kind is ErrorKind.RETRYABLE
        assert classify_error(HTTPFailure(429)).kind is ErrorKind.RATE_LIMITED
        assert classify_error(HTTPFailure(403)).kind is ErrorKind.FATAL

    def test_rate_limit_wait(self):
        """Should carry the server-provided wait."""
        verdict = classify_error(RateLimitedError("slow", wait_seconds=12))
        assert verdict.wait_seconds == 12
        assert verdict.retryable

    def test_capture_errors(self):
        """Should retry capture failures unless they are fatal."""
        assert classify_capture_error(OSError("no display")).retryable
        assert not classify_capture_error(ConfigError("Pillow missing")).retryable


class TestRetryPolicy:
    """Tests for backoff timing."""

    def test_exponential_growth(self):
        """Should multiply the delay per attempt up to the cap."""
        policy = RetryPolicy(initial_delay_ms=100, multiplier=2.0, max_delay_ms=350, jitter=0)
        assert policy.delay_for_attempt(0) == 0.0
        assert policy.delay_for_attempt(1) == pytest.approx(0.1)
        assert policy.delay_for_attempt(2) == pytest.approx(0.2)
        assert policy.delay_for_attempt(3) == pytest.approx(0.35)

    def test_jitter_bounds(self):
        """Should stay within the jitter spread."""
        policy = RetryPolicy(initial_delay_ms=1000, jitter=0.1)
        for _ in range(20):
            assert 0.9 <= policy.delay_for_attempt(1) <= 1.1

    def test_presets(self):
        """Should back off harder for model calls than for screenshots."""
        llm = RetryPolicy.for_llm_calls()
        shots = RetryPolicy.for_screenshots()
        assert llm.initial_delay_ms > shots.initial_delay_ms
        assert RetryPolicy.default() == RetryPolicy()


class TestRetryWithPolicy:
    """Tests for the retry driver."""

    @pytest.mark.asyncio
    async def test_recovers(self):
        """Should return the result after transient failures."""
        operation = Flaky([NetworkError("blip"), NetworkError("blip")])

        outcome = await retry_with_policy(operation, QUICK)

        assert outcome.result == "ok"
        assert outcome.attempts == 3
        assert outcome.retried

    @pytest.mark.asyncio
    async def test_fatal_not_retried(self):
        """Should raise a fatal error on the first attempt."""
        operation = Flaky([AuthError("bad key")])

        with pytest.raises(AuthError):
            await retry_with_policy(operation, QUICK)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_budget_exhausted(self):
        """Should raise the last error after max_retries retries."""
        operation = Flaky([NetworkError(str(i)) for i in range(10)])

        with pytest.raises(NetworkError, match="3"):
            await retry_with_policy(operation, QUICK)
        assert operation.calls == 4

    @pytest.mark.asyncio
    async def test_rate_limit_uses_server_wait(self):
        """Should sleep for the server's wait rather than the policy delay."""
        delays: list[float] = []
        operation = Flaky([RateLimitedError("slow down", wait_seconds=0.002)])

        await retry_with_policy(
            operation, QUICK, on_retry=lambda attempt, error, delay: delays.append(delay)
        )

        assert delays == [0.002]

    @pytest.mark.asyncio
    async def test_stop_during_backoff(self):
        """Should abandon retries once the run is stopped."""
        token = CancellationToken()
        token.stop()
        operation = Flaky([NetworkError("blip")])

        with pytest.raises(RunStopped):
            await retry_with_policy(operation, QUICK, cancel=token)
        assert operation.calls == 1
