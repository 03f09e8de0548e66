"""
runner.py - Wire a controller to the terminal

Builds an ``AgentController`` over the desktop driver, prints progress,
answers confirmation prompts (interactively or with ``--yes``), and maps
Ctrl+C to stop (a second Ctrl+C triggers the kill switch).
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import threading
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer

from omni_pilot.config.models import PilotConfig
from omni_pilot.core import events
from omni_pilot.core.controller import AgentController
from omni_pilot.core.events import Event, EventBus

from .console import ConsoleReporter, err_console

T = TypeVar("T")


def build_controller(config: PilotConfig) -> AgentController:
    from omni_pilot.desktop import DesktopDriver, DesktopSampler

    return AgentController(config, DesktopSampler(), DesktopDriver())


def _read_confirmation(question: str) -> asyncio.Future[bool]:
    """Ask ``question`` on a daemon thread; the future gets the answer.

    A daemon thread is never joined at shutdown, so an unanswered prompt
    cannot keep the process alive.
    """
    loop = asyncio.get_running_loop()
    answer: asyncio.Future[bool] = loop.create_future()

    def settle(value: bool) -> None:
        if not answer.done():
            answer.set_result(value)

    def ask() -> None:
        try:
            value = typer.confirm(question, default=False)
        except typer.Abort:
            value = False
        # The loop is gone if the run ended while we waited
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(settle, value)

    threading.Thread(target=ask, name="confirmation-prompt", daemon=True).start()
    return answer


class _ConfirmationPrompter:
    """Answers confirmation requests from the terminal.

    Each answer names the request it was asked for, so an answer typed after
    that request timed out is ignored rather than applied to a newer one.
    Only one prompt reads stdin at a time.
    """

    def __init__(self, controller: AgentController, auto_confirm: bool) -> None:
        self.controller = controller
        self.auto_confirm = auto_confirm
        self._tasks: set[asyncio.Task] = set()
        self._reading: asyncio.Future[bool] | None = None

    def subscribe(self, bus: EventBus) -> Callable[[], None]:
        hooks = [
            bus.subscribe(self, name=events.CONFIRMATION_REQUIRED),
            bus.subscribe(self, name=events.CONFIRMATION_RESOLVED),
        ]

        def unsubscribe() -> None:
            for hook in hooks:
                hook()

        return unsubscribe

    def __call__(self, event: Event) -> None:
        payload = event.payload
        if event.name == events.CONFIRMATION_RESOLVED:
            if payload.get("decision") == "timed_out" and not self.auto_confirm:
                err_console.print(
                    "[yellow]No answer in time, the action was skipped "
                    "(press Enter to dismiss the prompt)[/yellow]"
                )
            return
        if self.auto_confirm:
            err_console.print("[yellow]Auto-confirmed (--yes)[/yellow]")
            self.controller.confirm(payload.get("request_id"))
            return
        task = asyncio.get_running_loop().create_task(self._ask(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _ask(self, payload: dict) -> None:
        if self._reading is not None and not self._reading.done():
            await asyncio.shield(self._reading)
        self._reading = _read_confirmation(f"Allow {payload.get('description')}?")
        approved = await asyncio.shield(self._reading)

        request_id = payload.get("request_id")
        resolve = self.controller.confirm if approved else self.controller.deny
        if not resolve(request_id):
            err_console.print("[dim]Answer ignored: that request already ended[/dim]")

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()


async def drive(
    controller: AgentController,
    work: Callable[[], Awaitable[T]],
    auto_confirm: bool = False,
    stream_text: bool = False,
) -> T:
    """Run ``work`` with progress output, prompts, and Ctrl+C handling."""
    reporter = ConsoleReporter(controller.bus, stream_text=stream_text)
    prompter = _ConfirmationPrompter(controller, auto_confirm)
    unsubscribe = prompter.subscribe(controller.bus)

    loop = asyncio.get_running_loop()
    interrupts = 0

    def on_interrupt() -> None:
        nonlocal interrupts
        interrupts += 1
        if interrupts == 1:
            err_console.print("\n[yellow]Stopping after the current action...[/yellow]")
            controller.stop()
        else:
            err_console.print("\n[red]Kill switch[/red]")
            controller.kill()

    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    try:
        return await work()
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        unsubscribe()
        prompter.close()
        reporter.close()
        await controller.aclose()


__all__ = ["build_controller", "drive"]
