"""
controller.py - Run-control surface for UIs and the CLI

``AgentController`` owns everything that outlives a single run: the state
owner and its event bus, the confirmation gate, the instruction queue, and
the provider. It admits one run at a time; ``start()`` while a run or queue
is active raises ``AgentBusyError``.

Control calls (``pause``, ``resume``, ``stop``, ``kill``, ``confirm``,
``deny``) are plain synchronous methods. They flip flags on the current
cancellation token, which the loop reads at its suspension points.

Usage:
    controller = AgentController(config, sampler, driver)
    controller.bus.subscribe(print_state, name="agent.state")
    outcome = await controller.start("open the downloads folder")
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from omni_pilot.config.logging import get_logger
from omni_pilot.config.models import PilotConfig
from omni_pilot.providers import create_provider
from omni_pilot.providers.base import Provider

from .cancel import CancellationToken
from .confirmation import ConfirmationGate
from .drivers import InputDriver, ScreenSampler
from .errors import AgentBusyError
from .events import EventBus
from .history import InstructionHistory, SessionHistory
from .loop import AgentLoop, RunOutcome
from .queue import InstructionQueue, QueueRunner
from .state import AgentRunState, RunStateOwner

log = get_logger("omni_pilot.controller")


class AgentController:
    def __init__(
        self,
        config: PilotConfig,
        sampler: ScreenSampler,
        driver: InputDriver,
        provider: Provider | None = None,
        bus: EventBus | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            config: Full configuration
            sampler: Screen capture collaborator
            driver: Pointer and keyboard collaborator
            provider: Model backend; built from ``config.provider`` on first use if omitted
            bus: Event bus shared with observers
        """
        self.config = config
        self.sampler = sampler
        self.driver = driver
        self._provider = provider
        self.state = RunStateOwner(bus or EventBus())
        self.gate = ConfirmationGate(
            self.state, timeout=config.agent.confirmation_timeout_ms / 1000
        )
        self.queue = InstructionQueue()
        self.cancel = CancellationToken()
        self.loop: AgentLoop | None = None
        self.last_session: SessionHistory | None = None
        self._lock = asyncio.Lock()

    @property
    def bus(self) -> EventBus:
        return self.state.bus

    @property
    def provider(self) -> Provider:
        if self._provider is None:
            self._provider = create_provider(self.config.provider)
        return self._provider

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def snapshot(self) -> AgentRunState:
        return self.state.snapshot()

    # =========================================================================
    # Runs
    # =========================================================================

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._lock.locked():
            raise AgentBusyError("A run is already active")
        async with self._lock:
            self.cancel = CancellationToken()
            yield

    def _make_loop(self) -> AgentLoop:
        self.loop = AgentLoop(
            self.provider,
            self.sampler,
            self.driver,
            config=self.config.agent,
            state=self.state,
            cancel=self.cancel,
            gate=self.gate,
        )
        return self.loop

    async def start(self, instruction: str) -> RunOutcome:
        """Run one instruction to its end state.

        Raises:
            AgentBusyError: Another run or queue is active
        """
        instruction = instruction.strip()
        if not instruction:
            raise ValueError("Instruction must not be empty")
        async with self._exclusive():
            return await self._run(instruction)

    async def _run(self, instruction: str) -> RunOutcome:
        loop = self._make_loop()
        outcome = await loop.run(instruction)
        self.last_session = loop.session
        self._remember(instruction, outcome, loop.session)
        return outcome

    def _remember(
        self, instruction: str, outcome: RunOutcome, session: SessionHistory | None
    ) -> None:
        settings = self.config.history
        if not settings.enabled:
            return
        directory = Path(settings.directory).expanduser() if settings.directory else None
        try:
            history = InstructionHistory.load(
                directory / "history.json" if directory else None,
                max_entries=settings.max_instructions,
            )
            history.add(instruction, outcome.success)
            history.save()
            if session is not None:
                session.save(directory / "sessions" if directory else None)
        except OSError as e:
            log.warning("controller.history_write_failed", error=str(e))

    # =========================================================================
    # Queue
    # =========================================================================

    def enqueue(self, instructions: str | list[str]) -> list[str]:
        """Add one or more instructions; returns their ids."""
        if isinstance(instructions, str):
            instructions = [instructions]
        return self.queue.add_many([i.strip() for i in instructions if i.strip()])

    def clear_queue(self) -> None:
        """Drop pending items; the running item (if any) finishes normally."""
        if self.queue.processing:
            self.queue.clear_pending()
        else:
            self.queue.clear()

    async def start_queue(self) -> bool:
        """Run every pending instruction. Returns True if all completed.

        Raises:
            AgentBusyError: Another run or queue is active
        """
        async with self._exclusive():
            runner = QueueRunner(
                self.queue, self._run, self.state, self.cancel, config=self.config.queue
            )
            return await runner.start_queue()

    # =========================================================================
    # Control
    # =========================================================================

    def pause(self) -> None:
        self.cancel.pause()
        log.info("controller.pause")

    def resume(self) -> None:
        self.cancel.resume()
        log.info("controller.resume")

    def stop(self) -> None:
        self.cancel.stop()
        log.info("controller.stop")

    def kill(self) -> None:
        """Emergency stop; marks the run as ended by the kill switch."""
        self.cancel.kill()
        log.warning("controller.kill_switch")

    def confirm(self, request_id: str | None = None) -> bool:
        return self.gate.confirm(request_id)

    def deny(self, request_id: str | None = None) -> bool:
        return self.gate.deny(request_id)

    async def aclose(self) -> None:
        if self._provider is not None:
            await self._provider.aclose()


__all__ = ["AgentController"]
