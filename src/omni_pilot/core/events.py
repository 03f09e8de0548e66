"""
events.py - Outbound event stream

Observers (UI, CLI, tests) subscribe to named events. Delivery is
synchronous and in order; an observer that raises is logged and skipped so
it can never break a run.

Event names:
    agent.state              AgentRunState snapshot (coalesced)
    llm.chunk                streamed model text fragment
    parse.error              decode failure fed back to the model
    confirmation.required    dangerous action awaiting confirm/deny (has request_id)
    confirmation.resolved    {request_id, decision} once that request ends
    action.indicator         coordinates about to be acted on
    instruction.completed    {instruction, success}
    queue.item_started / queue.item_completed / queue.item_failed
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from omni_pilot.config.logging import get_logger

log = get_logger("omni_pilot.events")

STATE = "agent.state"
LLM_CHUNK = "llm.chunk"
PARSE_ERROR = "parse.error"
CONFIRMATION_REQUIRED = "confirmation.required"
CONFIRMATION_RESOLVED = "confirmation.resolved"
ACTION_INDICATOR = "action.indicator"
INSTRUCTION_COMPLETED = "instruction.completed"
QUEUE_ITEM_STARTED = "queue.item_started"
QUEUE_ITEM_COMPLETED = "queue.item_completed"
QUEUE_ITEM_FAILED = "queue.item_failed"

STREAM_MAXSIZE = 1000


@dataclass(frozen=True)
class Event:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Event], None]


class EventBus:
    """Fan-out of named events to listeners and async queues."""

    def __init__(self) -> None:
        self._listeners: list[tuple[str | None, Listener]] = []
        self._queues: list[asyncio.Queue[Event]] = []

    def subscribe(self, listener: Listener, name: str | None = None) -> Callable[[], None]:
        """Register ``listener`` for ``name`` (or every event). Returns an unsubscribe hook."""
        entry = (name, listener)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def stream(self, maxsize: int = STREAM_MAXSIZE) -> asyncio.Queue[Event]:
        """A queue receiving every event from now on.

        The queue is bounded: when a consumer falls ``maxsize`` events behind,
        the oldest event is dropped. Call ``close_stream`` when done reading.
        """
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def close_stream(self, queue: asyncio.Queue[Event]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def emit(self, name: str, payload: dict[str, Any] | None = None) -> None:
        event = Event(name, payload or {})
        for wanted, listener in list(self._listeners):
            if wanted is not None and wanted != name:
                continue
            try:
                listener(event)
            except Exception as e:
                log.warning("events.listener_failed", event_name=name, error=str(e))
        for queue in self._queues:
            if queue.full():
                queue.get_nowait()
                log.debug("events.stream_overflow", event_name=name)
            queue.put_nowait(event)


class EventRecorder:
    """Listener that keeps every event; handy for the CLI summary and tests."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[Event]:
        return [e for e in self.events if e.name == name]


__all__ = [
    "ACTION_INDICATOR",
    "CONFIRMATION_REQUIRED",
    "CONFIRMATION_RESOLVED",
    "Event",
    "EventBus",
    "EventRecorder",
    "INSTRUCTION_COMPLETED",
    "LLM_CHUNK",
    "PARSE_ERROR",
    "QUEUE_ITEM_COMPLETED",
    "QUEUE_ITEM_FAILED",
    "QUEUE_ITEM_STARTED",
    "STATE",
]
