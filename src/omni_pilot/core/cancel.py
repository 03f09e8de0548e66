"""
cancel.py - Cooperative run control

A ``CancellationToken`` is handed to every place a run may suspend: the top
of each iteration, backoff sleeps, the verification retry loop, and the
confirmation wait. Flags are plain attributes read without locking; only the
events are used to wake sleepers early.
"""

from __future__ import annotations

import asyncio

from .errors import RunStopped


class CancellationToken:
    """Stop / pause / kill-switch flags for one run."""

    def __init__(self) -> None:
        self.stopped = False
        self.paused = False
        self.killed = False
        self._stop_event = asyncio.Event()
        self._resume_event = asyncio.Event()
        self._resume_event.set()

    def stop(self) -> None:
        self.stopped = True
        self._stop_event.set()
        self._resume_event.set()

    def kill(self) -> None:
        """Emergency stop; also sets the stop flag."""
        self.killed = True
        self.stop()

    def pause(self) -> None:
        if not self.stopped:
            self.paused = True
            self._resume_event.clear()

    def resume(self) -> None:
        self.paused = False
        self._resume_event.set()

    def raise_if_stopped(self) -> None:
        if self.stopped:
            raise RunStopped("kill switch triggered" if self.killed else "stopped by user")

    async def wait_if_paused(self) -> None:
        """Suspend while paused. Returns immediately when running or stopped."""
        while self.paused and not self.stopped:
            await self._resume_event.wait()

    async def wait_stopped(self) -> None:
        await self._stop_event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep for ``seconds`` unless stopped first. Returns True if stopped."""
        if self.stopped:
            return True
        if seconds <= 0:
            await asyncio.sleep(0)
            return self.stopped
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True


__all__ = ["CancellationToken"]
