"""
executor.py - Perform one Action through the input driver

``ActionExecutor.execute`` is the whole pipeline for a single decided
action: the dangerous-action gate, then ``perform``. ``perform`` skips the
gate; the verification layer uses it for re-executions so a human is asked
only once.

Driver calls block, so they run on the default executor via
``run_blocking``. A started driver call always runs to completion; stop
requests are honoured between actions, never in the middle of one.
"""

from __future__ import annotations

import asyncio

from omni_pilot.config.logging import get_logger

from .actions import (
    MAX_BATCH_SIZE,
    ActionBase,
    ActionResult,
    Batch,
    Click,
    Complete,
    DoubleClick,
    Drag,
    Error,
    Key,
    Move,
    RightClick,
    Scroll,
    TripleClick,
    Type,
    Wait,
    WaitForElement,
)
from .cancel import CancellationToken
from .confirmation import ConfirmationGate, Decision
from .delay import DelayController
from .drivers import InputDriver, run_blocking
from .errors import ConfirmationDenied, ConfirmationTimedOut, ExecutionError
from .keys import is_dangerous, is_known_key, normalize_key, normalize_modifiers

log = get_logger("omni_pilot.executor")

MAX_WAIT_FOR_ELEMENT_MS = 30_000


def _truncate(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _driver_failure(action: ActionBase, error: ExecutionError) -> ActionResult:
    result = ActionResult.failed(str(error), message=f"Failed to {action.describe()}: {error}")
    result.execution_failed = True
    return result


class ActionExecutor:
    def __init__(
        self,
        driver: InputDriver,
        delays: DelayController | None = None,
        gate: ConfirmationGate | None = None,
        confirm_dangerous: bool = True,
    ) -> None:
        self.driver = driver
        self.delays = delays or DelayController()
        self.gate = gate
        self.confirm_dangerous = confirm_dangerous

    async def execute(self, action: ActionBase, cancel: CancellationToken) -> ActionResult:
        """Gate, then perform ``action``."""
        refusal = await self.authorize(action, cancel)
        if refusal is not None:
            return refusal
        return await self.perform(action, cancel)

    async def authorize(
        self, action: ActionBase, cancel: CancellationToken
    ) -> ActionResult | None:
        """Ask for confirmation when needed. Returns a failed result if refused."""
        if not (self.confirm_dangerous and self.gate is not None and is_dangerous(action)):
            return None

        decision = await self.gate.request(action, cancel)
        if decision.approved:
            return None

        if decision is Decision.TIMED_OUT:
            error = ConfirmationTimedOut(f"No confirmation for {action.describe()}")
        elif decision is Decision.STOPPED:
            error = ConfirmationDenied(f"Run stopped before {action.describe()} was confirmed")
        else:
            error = ConfirmationDenied(f"User denied {action.describe()}")
        log.info("executor.refused", action=action.describe(), decision=decision.value)
        return ActionResult(
            success=False,
            message=f"Action was not performed: {error}",
            error=type(error).__name__,
        )

    async def perform(self, action: ActionBase, cancel: CancellationToken) -> ActionResult:
        """Run ``action`` without the gate; driver failures become failed results."""
        try:
            if isinstance(action, Batch):
                return await self._batch(action, cancel)
            return await self._single(action, cancel)
        except ExecutionError as e:
            log.warning("executor.failed", action=action.describe(), error=str(e))
            return _driver_failure(action, e)

    # -------------------------------------------------------------------------
    # Composite
    # -------------------------------------------------------------------------

    async def _batch(self, batch: Batch, cancel: CancellationToken) -> ActionResult:
        total = len(batch.actions)
        if total > MAX_BATCH_SIZE:
            return ActionResult.failed(
                f"Batch too large: {total} actions (max {MAX_BATCH_SIZE})"
            )
        if total == 0:
            return ActionResult.ok("Batch completed: 0 actions executed")

        for index, sub in enumerate(batch.actions, start=1):
            if index > 1:
                await asyncio.sleep(self.delays.batch_step)
            try:
                result = await self._single(sub, cancel)
            except ExecutionError as e:
                result = _driver_failure(sub, e)
            log.debug("executor.batch_step", index=index, total=total, success=result.success)
            if not result.success:
                return ActionResult(
                    success=False,
                    message=f"Batch failed at action {index}/{total}: {result.message}",
                    completed=result.completed,
                    error=result.error,
                    execution_failed=result.execution_failed,
                )
            if result.completed:
                return ActionResult.ok(
                    f"Batch completed early at action {index}/{total}: {result.message}",
                    completed=True,
                )

        return ActionResult.ok(f"Batch completed: {total} actions executed")

    # -------------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------------

    async def _single(self, action: ActionBase, cancel: CancellationToken) -> ActionResult:
        match action:
            case Complete(message=message):
                return ActionResult.ok(message, completed=True)
            case Error(message=message):
                return ActionResult(success=False, message=message, completed=True, error=message)
            case Wait(duration_ms=duration):
                await cancel.sleep(duration / 1000)
                return ActionResult.ok(f"Waited {duration}ms")
            case WaitForElement(description=description, timeout_ms=timeout):
                waited = min(timeout, MAX_WAIT_FOR_ELEMENT_MS)
                await cancel.sleep(waited / 1000)
                return ActionResult.ok(
                    f"Waited {waited}ms for {description!r}; check the next screenshot"
                )
            case Click(x=x, y=y, button=button):
                await self._call(self.driver.click, x, y, button)
                await asyncio.sleep(self.delays.click)
                return ActionResult.ok(f"Clicked {button} at ({x}, {y})")
            case DoubleClick(x=x, y=y):
                await self._call(self.driver.double_click, x, y)
                return ActionResult.ok(f"Double-clicked at ({x}, {y})")
            case TripleClick(x=x, y=y):
                await self._call(self.driver.triple_click, x, y)
                return ActionResult.ok(f"Triple-clicked at ({x}, {y})")
            case RightClick(x=x, y=y):
                await self._call(self.driver.click, x, y, "right")
                return ActionResult.ok(f"Right-clicked at ({x}, {y})")
            case Move(x=x, y=y):
                await self._call(self.driver.move_to, x, y)
                return ActionResult.ok(f"Moved to ({x}, {y})")
            case Drag():
                await self._call(
                    self.driver.drag,
                    (action.start_x, action.start_y),
                    (action.end_x, action.end_y),
                    action.button,
                    action.duration_ms,
                )
                return ActionResult.ok(
                    f"Dragged from ({action.start_x}, {action.start_y}) "
                    f"to ({action.end_x}, {action.end_y})"
                )
            case Scroll(x=x, y=y, direction=direction, amount=amount):
                await self._call(self.driver.scroll, x, y, direction, amount)
                return ActionResult.ok(f"Scrolled {direction} {amount} at ({x}, {y})")
            case Type(text=text):
                await self._call(self.driver.type_text, text)
                return ActionResult.ok(f"Typed: {_truncate(text)}")
            case Key(key=key, modifiers=modifiers):
                if not is_known_key(key):
                    return ActionResult.failed(f"Unknown key: {key}")
                name = normalize_key(key)
                mods = normalize_modifiers(modifiers)
                await self._call(self.driver.key, name, mods)
                return ActionResult.ok(f"Pressed key: {'+'.join([*mods, name])}")
        raise ExecutionError(f"Cannot execute {action.name} here")

    async def _call(self, func, *args) -> None:
        try:
            await run_blocking(func, *args)
        except Exception as e:
            raise ExecutionError(f"{getattr(func, '__name__', 'driver call')} failed: {e}") from e


__all__ = ["ActionExecutor"]
