"""
verification.py - Did the action change the screen?

Actions that should visibly change something (clicks, typing, keys,
scrolling) are bracketed by two captures. Identical fingerprints mean the
action apparently did nothing, so it is executed again after
``retry_delay_ms``, up to ``max_retries`` times. Running out of retries is
not an error: the result stays successful, carries a warning, and the model
sees the unchanged screen on its next turn.

Driver errors have their own budget. A failed action is executed again
until it has failed ``max_execution_failures`` times in a row; that result
is marked fatal and the loop ends the run.

The fingerprint is a digest of the raw capture bytes. Any pixel difference
counts as a change.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from dataclasses import dataclass

from omni_pilot.config.logging import get_logger

from .actions import (
    ActionBase,
    ActionResult,
    Batch,
    Click,
    DoubleClick,
    Key,
    RightClick,
    Scroll,
    TripleClick,
    Type,
)
from .cancel import CancellationToken
from .delay import DelayController
from .drivers import Capture, ScreenSampler, run_blocking
from .errors import EffectNotObservedWarning
from .executor import ActionExecutor

log = get_logger("omni_pilot.verify")

_VISIBLE_EFFECT = (Click, DoubleClick, TripleClick, RightClick, Type, Key, Scroll)


def fingerprint(capture: Capture) -> str:
    """Order-sensitive digest of a capture, including its dimensions."""
    digest = hashlib.blake2b(digest_size=16)
    digest.update(f"{capture.width}x{capture.height}:".encode())
    digest.update(capture.data)
    return digest.hexdigest()


def needs_verification(action: ActionBase) -> bool:
    if isinstance(action, Batch):
        return any(needs_verification(sub) for sub in action.actions)
    return isinstance(action, _VISIBLE_EFFECT)


@dataclass
class RetryContext:
    """Per-action attempt counter plus the pre-execution fingerprint."""

    max_retries: int = 3
    retry_delay_ms: int = 1000
    enabled: bool = True
    attempts: int = 0
    before: str | None = None

    def should_retry(self) -> bool:
        return self.enabled and self.attempts < self.max_retries

    def increment(self) -> None:
        if self.attempts >= self.max_retries:
            raise RuntimeError("retry budget already spent")
        self.attempts += 1

    def reset(self) -> None:
        self.attempts = 0
        self.before = None

    def capture_before(self, value: str) -> None:
        self.before = value

    def screen_changed(self, after: str) -> bool:
        return self.before is None or after != self.before


class VerifyingExecutor:
    """Wraps an ActionExecutor with before/after screen comparison."""

    def __init__(
        self,
        executor: ActionExecutor,
        sampler: ScreenSampler,
        delays: DelayController | None = None,
        max_retries: int = 3,
        retry_delay_ms: int = 1000,
        enabled: bool = True,
        max_execution_failures: int = 3,
    ) -> None:
        self.executor = executor
        self.sampler = sampler
        self.delays = delays or executor.delays
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.enabled = enabled
        self.max_execution_failures = max_execution_failures

    async def _fingerprint(self) -> str | None:
        try:
            capture = await run_blocking(self.sampler.capture)
        except Exception as e:
            log.warning("verify.capture_failed", error=str(e))
            return None
        return fingerprint(capture)

    async def _perform(
        self,
        action: ActionBase,
        cancel: CancellationToken,
        on_retry: Callable[[int], None] | None,
    ) -> ActionResult:
        """Perform ``action``, re-executing after driver errors.

        ``max_execution_failures`` driver errors in a row mark the result
        fatal. A stop request ends the re-executions early.
        """
        failures = 0
        while True:
            result = await self.executor.perform(action, cancel)
            if not result.execution_failed:
                result.retry_count = failures
                return result
            failures += 1
            result.retry_count = failures - 1
            if failures >= self.max_execution_failures:
                result.fatal = True
                log.error(
                    "verify.execution_failed",
                    action=action.describe(),
                    failures=failures,
                    error=result.error,
                )
                return result
            if cancel.stopped:
                return result

            log.warning(
                "verify.execution_retrying",
                action=action.describe(),
                failures=failures,
                max_failures=self.max_execution_failures,
                error=result.error,
            )
            if on_retry is not None:
                on_retry(failures)
            if await cancel.sleep(self.retry_delay_ms / 1000):
                return result

    async def execute(
        self,
        action: ActionBase,
        cancel: CancellationToken,
        on_retry: Callable[[int], None] | None = None,
    ) -> ActionResult:
        refusal = await self.executor.authorize(action, cancel)
        if refusal is not None:
            return refusal

        if not (self.enabled and needs_verification(action)):
            return await self._perform(action, cancel, on_retry)

        ctx = RetryContext(max_retries=self.max_retries, retry_delay_ms=self.retry_delay_ms)
        before = await self._fingerprint()
        if before is None:
            return await self._perform(action, cancel, on_retry)
        ctx.capture_before(before)

        while True:
            result = await self._perform(action, cancel, on_retry)
            result.retry_count += ctx.attempts
            if not result.success or result.completed:
                return result

            await cancel.sleep(self.delays.settle)
            after = await self._fingerprint()
            if after is None or ctx.screen_changed(after):
                return result

            if not ctx.should_retry():
                warning = EffectNotObservedWarning(
                    f"no screen change detected after {ctx.attempts} retries"
                )
                log.warning(
                    "verify.effect_not_observed",
                    action=action.describe(),
                    attempts=ctx.attempts,
                )
                result.warnings.append(str(warning))
                return result

            if cancel.stopped:
                return result

            ctx.increment()
            log.info(
                "verify.retrying",
                action=action.describe(),
                attempt=ctx.attempts,
                max_retries=ctx.max_retries,
            )
            if on_retry is not None:
                on_retry(ctx.attempts)
            if await cancel.sleep(ctx.retry_delay_ms / 1000):
                return result


__all__ = ["RetryContext", "VerifyingExecutor", "fingerprint", "needs_verification"]
