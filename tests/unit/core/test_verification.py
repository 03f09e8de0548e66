"""
test_verification.py - Screen-change verification and re-execution
"""

from __future__ import annotations

import pytest
from conftest import FakeDriver, FakeSampler

from omni_pilot.core.actions import Batch, Click, Complete, Move, Type, Wait
from omni_pilot.core.delay import DelayController
from omni_pilot.core.drivers import Capture
from omni_pilot.core.executor import ActionExecutor
from omni_pilot.core.verification import (
    RetryContext,
    VerifyingExecutor,
    fingerprint,
    needs_verification,
)


def _verifier(driver, sampler, **kwargs) -> VerifyingExecutor:
    delays = DelayController(speed_multiplier=3.0)
    return VerifyingExecutor(
        ActionExecutor(driver, delays=delays), sampler, retry_delay_ms=1, **kwargs
    )


class TestFingerprint:
    """Tests for capture fingerprints."""

    def test_identical_bytes_match(self):
        """Should give equal fingerprints for equal captures."""
        a = Capture(b"same", 10, 10)
        b = Capture(b"same", 10, 10)
        assert fingerprint(a) == fingerprint(b)

    def test_any_difference_counts(self):
        """Should change with content or size."""
        base = fingerprint(Capture(b"abc", 10, 10))
        assert fingerprint(Capture(b"abd", 10, 10)) != base
        assert fingerprint(Capture(b"abc", 10, 11)) != base

    def test_which_actions_are_verified(self):
        """Should verify visible-effect actions only."""
        assert needs_verification(Click(x=1, y=1))
        assert needs_verification(Type(text="a"))
        assert not needs_verification(Move(x=1, y=1))
        assert not needs_verification(Wait(duration_ms=1))
        assert not needs_verification(Complete(message="done"))
        assert needs_verification(Batch(actions=[Wait(duration_ms=1), Type(text="a")]))


class TestRetryContext:
    """Tests for the per-action attempt counter."""

    def test_budget(self):
        """Should allow exactly max_retries increments."""
        ctx = RetryContext(max_retries=2)
        assert ctx.should_retry()
        ctx.increment()
        ctx.increment()
        assert not ctx.should_retry()
        with pytest.raises(RuntimeError):
            ctx.increment()

    def test_disabled(self):
        """Should never retry when disabled."""
        assert not RetryContext(enabled=False).should_retry()

    def test_screen_changed(self):
        """Should compare against the captured fingerprint."""
        ctx = RetryContext()
        assert ctx.screen_changed("a")
        ctx.capture_before("a")
        assert not ctx.screen_changed("a")
        assert ctx.screen_changed("b")
        ctx.reset()
        assert ctx.before is None and ctx.attempts == 0


class TestVerifyingExecutor:
    """Tests for the verify-and-retry wrapper."""

    @pytest.mark.asyncio
    async def test_unchanged_screen_retried_then_warned(self, driver, cancel):
        """Should re-execute max_retries times, then succeed with a warning."""
        verifier = _verifier(driver, FakeSampler(mode="static"), max_retries=3)
        retries: list[int] = []

        result = await verifier.execute(Click(x=5, y=5), cancel, on_retry=retries.append)

        assert result.success
        assert driver.names() == ["click"] * 4
        assert retries == [1, 2, 3]
        assert result.retry_count == 3
        assert len(result.warnings) == 1
        assert "no screen change" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_changed_screen_not_retried(self, driver, sampler, cancel):
        """Should accept the first execution when the screen changes."""
        verifier = _verifier(driver, sampler)

        result = await verifier.execute(Type(text="hi"), cancel)

        assert result.success
        assert driver.names() == ["type_text"]
        assert result.warnings == []
        # Before and after captures
        assert sampler.count == 2

    @pytest.mark.asyncio
    async def test_disabled_skips_captures(self, driver, sampler, cancel):
        """Should execute once without capturing when self-correction is off."""
        verifier = _verifier(driver, sampler, enabled=False)

        await verifier.execute(Click(x=1, y=1), cancel)

        assert sampler.count == 0
        assert driver.names() == ["click"]

    @pytest.mark.asyncio
    async def test_capture_failure_executes_once(self, driver, cancel):
        """Should fall back to a single execution when the screen cannot be read."""
        sampler = FakeSampler(mode="static")
        sampler.failures = [OSError("display gone")]
        verifier = _verifier(driver, sampler)

        result = await verifier.execute(Click(x=1, y=1), cancel)

        assert result.success
        assert driver.names() == ["click"]

    @pytest.mark.asyncio
    async def test_driver_failure_re_executed(self, sampler, cancel):
        """Should run the same action again after a driver error."""
        driver = FakeDriver(fail_at=1)
        verifier = _verifier(driver, sampler, max_execution_failures=3)
        retries: list[int] = []

        result = await verifier.execute(Click(x=1, y=1), cancel, on_retry=retries.append)

        assert result.success
        assert not result.fatal
        assert driver.attempts == 2
        assert driver.names() == ["click"]
        assert retries == [1]
        assert result.retry_count == 1

    @pytest.mark.asyncio
    async def test_driver_failures_exhaust_budget(self, sampler, cancel):
        """Should mark the result fatal once the driver fails too often in a row."""

        class BrokenKeyboard(FakeDriver):
            def type_text(self, text):
                self.attempts += 1
                raise RuntimeError("no keyboard")

        driver = BrokenKeyboard()
        verifier = _verifier(driver, sampler, max_execution_failures=2)

        result = await verifier.execute(Type(text="hello"), cancel)

        assert not result.success
        assert result.execution_failed
        assert result.fatal
        assert driver.attempts == 2
        assert "no keyboard" in result.error

    @pytest.mark.asyncio
    async def test_stop_ends_driver_retries(self, cancel):
        """Should not re-execute a failed action after a stop request."""
        driver = FakeDriver(fail_at=1)
        verifier = _verifier(driver, FakeSampler(), enabled=False)
        cancel.stop()

        result = await verifier.execute(Click(x=1, y=1), cancel)

        assert not result.success
        assert not result.fatal
        assert driver.attempts == 1

    @pytest.mark.asyncio
    async def test_stop_ends_retries(self, driver, cancel):
        """Should not re-execute after a stop request."""
        verifier = _verifier(driver, FakeSampler(mode="static"), max_retries=5)

        def stop_on_first_retry(attempt: int) -> None:
            cancel.stop()

        result = await verifier.execute(Click(x=1, y=1), cancel, on_retry=stop_on_first_retry)

        assert result.success
        assert driver.names() == ["click"]
