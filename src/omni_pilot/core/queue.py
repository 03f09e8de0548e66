"""
queue.py - Several instructions, one after another

``InstructionQueue`` is the ordered list of items and their statuses.
``QueueRunner`` feeds pending items to the agent loop one at a time. With
``failure_mode="stop"`` the first run that does not complete halts the
queue; with ``"continue"`` the failure is recorded and the next item starts
after ``delay_ms``. A user stop always halts the queue.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from enum import Enum

from pydantic import BaseModel, Field

from omni_pilot.config.logging import get_logger
from omni_pilot.config.models import QueueConfig

from . import events
from .cancel import CancellationToken
from .loop import RunOutcome
from .state import RunStateOwner

log = get_logger("omni_pilot.queue")


class QueueItemStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class QueuedInstruction(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    instruction: str
    status: QueueItemStatus = QueueItemStatus.PENDING
    result: str | None = None
    error: str | None = None


class InstructionQueue:
    """Ordered instructions with per-item status."""

    def __init__(self) -> None:
        self._items: list[QueuedInstruction] = []
        self.current_index = 0
        self.processing = False

    @property
    def items(self) -> list[QueuedInstruction]:
        return [item.model_copy() for item in self._items]

    def add(self, instruction: str) -> str:
        """Append a pending item and return its id."""
        item = QueuedInstruction(instruction=instruction)
        self._items.append(item)
        return item.id

    def add_many(self, instructions: list[str]) -> list[str]:
        return [self.add(text) for text in instructions]

    def remove(self, item_id: str) -> bool:
        """Drop an item. The running item cannot be removed."""
        for pos, item in enumerate(self._items):
            if item.id != item_id:
                continue
            if item.status is QueueItemStatus.RUNNING:
                return False
            del self._items[pos]
            if pos < self.current_index:
                self.current_index -= 1
            return True
        return False

    def reorder(self, ids: list[str]) -> bool:
        """Reorder the pending items; ``ids`` must name every pending item exactly once."""
        pending = {item.id: item for item in self._items if item.status is QueueItemStatus.PENDING}
        if len(ids) != len(pending) or set(ids) != set(pending):
            return False
        reordered = iter(pending[i] for i in ids)
        self._items = [
            next(reordered) if item.status is QueueItemStatus.PENDING else item
            for item in self._items
        ]
        return True

    def clear(self) -> None:
        self._items.clear()
        self.current_index = 0
        self.processing = False

    def clear_pending(self) -> None:
        self._items = [i for i in self._items if i.status is not QueueItemStatus.PENDING]
        self.current_index = min(self.current_index, len(self._items))

    def next_pending(self) -> QueuedInstruction | None:
        """Move to the next pending item at or after the cursor."""
        for i in range(self.current_index, len(self._items)):
            if self._items[i].status is QueueItemStatus.PENDING:
                self.current_index = i
                return self._items[i]
        return None

    def current(self) -> QueuedInstruction | None:
        if 0 <= self.current_index < len(self._items):
            return self._items[self.current_index]
        return None

    def mark_running(self) -> None:
        if item := self.current():
            item.status = QueueItemStatus.RUNNING

    def mark_completed(self, result: str | None = None) -> None:
        if item := self.current():
            item.status = QueueItemStatus.COMPLETED
            item.result = result

    def mark_failed(self, error: str) -> None:
        if item := self.current():
            item.status = QueueItemStatus.FAILED
            item.error = error

    def _count(self, status: QueueItemStatus) -> int:
        return sum(1 for item in self._items if item.status is status)

    @property
    def pending_count(self) -> int:
        return self._count(QueueItemStatus.PENDING)

    @property
    def completed_count(self) -> int:
        return self._count(QueueItemStatus.COMPLETED)

    @property
    def failed_count(self) -> int:
        return self._count(QueueItemStatus.FAILED)

    @property
    def total_count(self) -> int:
        return len(self._items)

    def has_pending(self) -> bool:
        return self.pending_count > 0

    def __len__(self) -> int:
        return len(self._items)


RunInstruction = Callable[[str], Awaitable[RunOutcome]]


class QueueRunner:
    """Runs queued instructions through the loop, one at a time."""

    def __init__(
        self,
        queue: InstructionQueue,
        run: RunInstruction,
        state: RunStateOwner,
        cancel: CancellationToken,
        config: QueueConfig | None = None,
    ) -> None:
        self.queue = queue
        self.run = run
        self.state = state
        self.cancel = cancel
        self.config = config or QueueConfig()

    def _payload(self, item: QueuedInstruction, index: int, total: int, **extra) -> dict:
        return {
            "id": item.id,
            "index": index,
            "total": total,
            "instruction": item.instruction,
            **extra,
        }

    async def start_queue(self) -> bool:
        """Process pending items. Returns True if every processed item completed."""
        queue = self.queue
        bus = self.state.bus
        total = queue.total_count
        queue.processing = True
        self.state.update(queue_active=True, queue_index=0, queue_total=total)
        log.info("queue.started", total=total, failure_mode=self.config.failure_mode)

        all_ok = True
        first = True
        try:
            while not self.cancel.stopped:
                item = queue.next_pending()
                if item is None:
                    break
                if not first and await self.cancel.sleep(self.config.delay_ms / 1000):
                    break
                first = False

                index = queue.current_index
                queue.mark_running()
                self.state.update(queue_index=index + 1, queue_total=queue.total_count)
                bus.emit(events.QUEUE_ITEM_STARTED, self._payload(item, index, total))

                outcome = await self.run(item.instruction)

                if outcome.success:
                    queue.mark_completed(outcome.message)
                    bus.emit(events.QUEUE_ITEM_COMPLETED, self._payload(item, index, total))
                    continue

                all_ok = False
                error = outcome.message or outcome.final_status
                queue.mark_failed(error)
                bus.emit(
                    events.QUEUE_ITEM_FAILED,
                    self._payload(item, index, total, error=error, status=outcome.final_status),
                )
                log.warning("queue.item_failed", index=index, error=error)
                if outcome.final_status == "stopped" or self.config.failure_mode == "stop":
                    break
        finally:
            queue.processing = False
            self.state.update(queue_active=False)
            self.state.publish(force=True)

        if self.cancel.stopped:
            all_ok = False
        log.info(
            "queue.finished",
            completed=queue.completed_count,
            failed=queue.failed_count,
            pending=queue.pending_count,
        )
        return all_ok


__all__ = ["InstructionQueue", "QueueItemStatus", "QueueRunner", "QueuedInstruction"]
