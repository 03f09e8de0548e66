"""
confirmation.py - Human approval for dangerous actions

The gate flips the run to ``AwaitingConfirmation``, announces the pending
action, and suspends until ``confirm()``, ``deny()``, a stop request, or the
timeout. Silence means no: a timeout resolves to deny.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
from enum import Enum

from omni_pilot.config.logging import get_logger

from . import events
from .actions import ActionBase
from .cancel import CancellationToken
from .state import AgentStatus, RunStateOwner

log = get_logger("omni_pilot.confirmation")


class Decision(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"

    @property
    def approved(self) -> bool:
        return self is Decision.APPROVED


class ConfirmationGate:
    """One pending confirmation at a time.

    Every request carries a ``request_id`` in its payload. Answers that name
    an id are only accepted while that request is still pending, so a late
    answer can never approve a later action.
    """

    def __init__(self, state: RunStateOwner, timeout: float = 30.0) -> None:
        self.state = state
        self.timeout = timeout
        self._pending: asyncio.Future[bool] | None = None
        self._pending_id: str | None = None
        self._ids = itertools.count(1)

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    @property
    def pending_id(self) -> str | None:
        return self._pending_id if self.pending else None

    def confirm(self, request_id: str | None = None) -> bool:
        """Approve the pending action. Returns False if nothing matching was pending."""
        return self._resolve(True, request_id)

    def deny(self, request_id: str | None = None) -> bool:
        return self._resolve(False, request_id)

    def _resolve(self, approved: bool, request_id: str | None) -> bool:
        future = self._pending
        if future is None or future.done():
            return False
        if request_id is not None and request_id != self._pending_id:
            log.info(
                "confirmation.stale_answer", request_id=request_id, pending=self._pending_id
            )
            return False
        future.set_result(approved)
        return True

    async def request(self, action: ActionBase, cancel: CancellationToken) -> Decision:
        """Wait for a human verdict on ``action``."""
        if cancel.stopped:
            return Decision.STOPPED

        request_id = f"confirm-{next(self._ids)}"
        payload = {
            "request_id": request_id,
            "action": action.model_dump(mode="json"),
            "description": action.describe(),
            "timeout_ms": int(self.timeout * 1000),
        }
        previous = self.state.status
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._pending = future
        self._pending_id = request_id

        self.state.set_status(AgentStatus.AWAITING_CONFIRMATION, pending_action=payload)
        self.state.bus.emit(events.CONFIRMATION_REQUIRED, payload)
        log.info("confirmation.required", action=action.describe(), timeout_s=self.timeout)

        stop_waiter = asyncio.ensure_future(cancel.wait_stopped())
        try:
            done, _ = await asyncio.wait(
                {future, stop_waiter},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if future in done:
                decision = Decision.APPROVED if future.result() else Decision.DENIED
            elif stop_waiter in done:
                decision = Decision.STOPPED
            else:
                decision = Decision.TIMED_OUT
        finally:
            stop_waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stop_waiter
            if not future.done():
                future.cancel()
            self._pending = None
            self._pending_id = None
            if not cancel.stopped:
                self.state.set_status(previous, pending_action=None)
            else:
                self.state.update(pending_action=None)

        log.info("confirmation.resolved", action=action.describe(), decision=decision.value)
        self.state.bus.emit(
            events.CONFIRMATION_RESOLVED,
            {"request_id": request_id, "decision": decision.value},
        )
        return decision


__all__ = ["ConfirmationGate", "Decision"]
