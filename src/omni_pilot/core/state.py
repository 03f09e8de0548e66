"""
state.py - Run state and its single writer

``AgentRunState`` is what observers see. ``RunStateOwner`` is the only
object that mutates it; everyone else reads ``snapshot()`` copies or the
``agent.state`` events it publishes. Publishing is coalesced: at most one
snapshot per loop phase, and no more often than every 50 ms unless the
status changed.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from . import events
from .events import EventBus

STATE_EMISSION_MIN_INTERVAL = 0.05
MAX_ACTION_HISTORY = 100


class AgentStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RETRYING = "retrying"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentStatus.COMPLETED, AgentStatus.ERROR, AgentStatus.IDLE)


class ActionHistoryEntry(BaseModel):
    action: str
    timestamp: datetime = Field(default_factory=datetime.now)
    is_error: bool = False


class AgentRunState(BaseModel):
    """Observable state of the current (or last) run."""

    status: AgentStatus = AgentStatus.IDLE
    instruction: str | None = None
    iteration: int = 0
    max_iterations: int = 150
    last_action: str | None = None
    last_result: str | None = None
    last_error: str | None = None
    pending_action: dict[str, Any] | None = None
    tokens_per_second: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    action_history: list[ActionHistoryEntry] = Field(default_factory=list)
    retry_count: int = 0
    consecutive_errors: int = 0
    total_retries: int = 0
    queue_index: int | None = None
    queue_total: int | None = None
    queue_active: bool = False
    preview_mode: bool = False
    kill_switch_triggered: bool = False


class RunStateOwner:
    """Owns and publishes the AgentRunState."""

    def __init__(
        self,
        bus: EventBus | None = None,
        min_interval: float = STATE_EMISSION_MIN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bus = bus or EventBus()
        self.min_interval = min_interval
        self._clock = clock
        self._state = AgentRunState()
        self._last_emit: float | None = None
        self._last_status: AgentStatus | None = None
        self.emitted = 0

    @property
    def status(self) -> AgentStatus:
        return self._state.status

    def snapshot(self) -> AgentRunState:
        return self._state.model_copy(deep=True)

    def get(self, field: str) -> Any:
        return getattr(self._state, field)

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def begin_run(self, instruction: str, max_iterations: int, preview_mode: bool) -> None:
        """Reset per-run fields, keeping queue progress."""
        keep = {
            "queue_index": self._state.queue_index,
            "queue_total": self._state.queue_total,
            "queue_active": self._state.queue_active,
        }
        self._state = AgentRunState(
            status=AgentStatus.RUNNING,
            instruction=instruction,
            max_iterations=max_iterations,
            preview_mode=preview_mode,
            **keep,
        )
        self.publish(force=True)

    def update(self, **changes: Any) -> None:
        for key, value in changes.items():
            if not hasattr(self._state, key):
                raise AttributeError(f"AgentRunState has no field {key!r}")
            setattr(self._state, key, value)

    def set_status(self, status: AgentStatus, **changes: Any) -> None:
        """Change status and publish immediately."""
        self.update(status=status, **changes)
        self.publish(force=True)

    def fail(self, error: str) -> None:
        self.set_status(AgentStatus.ERROR, last_error=error)

    def add_tokens(self, input_tokens: int, output_tokens: int, elapsed: float) -> None:
        s = self._state
        s.total_input_tokens += input_tokens
        s.total_output_tokens += output_tokens
        if elapsed > 0 and output_tokens:
            s.tokens_per_second = round(output_tokens / elapsed, 2)

    def record_action(self, description: str, is_error: bool = False) -> None:
        history = self._state.action_history
        history.append(ActionHistoryEntry(action=description, is_error=is_error))
        del history[:-MAX_ACTION_HISTORY]

    def count_error(self, error: str) -> int:
        self._state.consecutive_errors += 1
        self._state.last_error = error
        return self._state.consecutive_errors

    def clear_errors(self) -> None:
        self._state.consecutive_errors = 0

    def add_retries(self, count: int) -> None:
        self._state.retry_count = count
        self._state.total_retries += count

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def publish(self, force: bool = False) -> bool:
        """Emit a snapshot unless one went out within ``min_interval``.

        Status transitions and ``force`` bypass the interval. Returns True if
        an event was emitted.
        """
        now = self._clock()
        status_changed = self._state.status != self._last_status
        recent = self._last_emit is not None and now - self._last_emit < self.min_interval
        if recent and not (force or status_changed):
            return False

        self._last_emit = now
        self._last_status = self._state.status
        self.emitted += 1
        self.bus.emit(events.STATE, self._state.model_dump(mode="json"))
        return True


__all__ = [
    "ActionHistoryEntry",
    "AgentRunState",
    "AgentStatus",
    "RunStateOwner",
]
