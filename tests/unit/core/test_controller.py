"""
test_controller.py - AgentController run admission, queue, and history
"""

from __future__ import annotations

import asyncio
import json

import pytest
from conftest import FakeDriver, FakeSampler, ScriptedProvider, invocation

from omni_pilot.config.models import AgentConfig, HistoryConfig, PilotConfig, QueueConfig
from omni_pilot.core import events
from omni_pilot.core.controller import AgentController
from omni_pilot.core.errors import AgentBusyError
from omni_pilot.core.queue import QueueItemStatus
from omni_pilot.core.state import AgentStatus


@pytest.fixture
def pilot_config(fast_config, tmp_path) -> PilotConfig:
    return PilotConfig(
        agent=fast_config,
        queue=QueueConfig(delay_ms=0),
        history=HistoryConfig(directory=str(tmp_path / "history")),
    )


def _controller(config: PilotConfig, *replies) -> AgentController:
    return AgentController(
        config, FakeSampler(), FakeDriver(), provider=ScriptedProvider(list(replies))
    )


class TestRuns:
    """Tests for single-instruction runs."""

    @pytest.mark.asyncio
    async def test_start_records_history(self, pilot_config, tmp_path):
        """Should run to completion and persist history and the session."""
        controller = _controller(pilot_config, invocation("complete", message="done"))

        outcome = await controller.start("  open the mail app  ")

        assert outcome.success
        history = json.loads((tmp_path / "history" / "history.json").read_text())
        assert history["entries"][0]["instruction"] == "open the mail app"
        sessions = list((tmp_path / "history" / "sessions").glob("*.json"))
        assert len(sessions) == 1
        assert controller.last_session.final_status == "completed"

    @pytest.mark.asyncio
    async def test_history_disabled(self, pilot_config, tmp_path):
        """Should write nothing when history is off."""
        config = pilot_config.model_copy(
            update={"history": HistoryConfig(enabled=False, directory=str(tmp_path / "h"))}
        )
        controller = _controller(config, invocation("complete", message="done"))

        await controller.start("anything")

        assert not (tmp_path / "h").exists()

    @pytest.mark.asyncio
    async def test_empty_instruction(self, pilot_config):
        """Should refuse a blank instruction."""
        with pytest.raises(ValueError):
            await _controller(pilot_config).start("   ")

    @pytest.mark.asyncio
    async def test_second_start_while_running_is_busy(self, pilot_config):
        """Should reject a second run while one is active."""
        controller = _controller(pilot_config, invocation("complete", message="done"))
        controller.provider.gate = asyncio.Event()

        first = asyncio.create_task(controller.start("first"))
        await asyncio.wait_for(controller.provider.started.wait(), timeout=2)

        assert controller.busy
        with pytest.raises(AgentBusyError):
            await controller.start("second")
        with pytest.raises(AgentBusyError):
            await controller.start_queue()

        controller.provider.gate.set()
        assert (await first).success
        assert not controller.busy

    @pytest.mark.asyncio
    async def test_stop_through_controller(self, pilot_config):
        """Should end the active run as stopped."""
        controller = _controller(pilot_config, invocation("wait", duration_ms=1))
        controller.provider.gate = asyncio.Event()

        task = asyncio.create_task(controller.start("wait around"))
        await asyncio.wait_for(controller.provider.started.wait(), timeout=2)
        controller.kill()
        controller.provider.gate.set()
        outcome = await task

        assert outcome.final_status == "stopped"
        snapshot = controller.snapshot()
        assert snapshot.status is AgentStatus.IDLE
        assert snapshot.kill_switch_triggered

    @pytest.mark.asyncio
    async def test_fresh_token_per_run(self, pilot_config):
        """Should not carry a stop request into the next run."""
        controller = _controller(
            pilot_config,
            invocation("complete", message="one"),
            invocation("complete", message="two"),
        )
        controller.stop()

        outcome = await controller.start("after an old stop")

        assert outcome.success

    @pytest.mark.asyncio
    async def test_confirm_through_controller(self, pilot_config):
        """Should approve a pending dangerous action."""
        config = pilot_config.model_copy(
            update={"agent": AgentConfig(speed_multiplier=3.0, confirmation_timeout_ms=5000)}
        )
        controller = _controller(
            config,
            invocation("key", key="q", modifiers=["cmd"]),
            invocation("complete", message="quit"),
        )
        controller.bus.subscribe(lambda event: controller.confirm(), events.CONFIRMATION_REQUIRED)

        outcome = await controller.start("quit the app")

        assert outcome.success
        assert controller.driver.calls == [("key", ("q", ["meta"]))]

    @pytest.mark.asyncio
    async def test_aclose_closes_provider(self, pilot_config):
        """Should close the provider."""
        controller = _controller(pilot_config)
        await controller.aclose()
        assert controller.provider.closed


class TestQueue:
    """Tests for queued instructions through the controller."""

    @pytest.mark.asyncio
    async def test_start_queue(self, pilot_config):
        """Should run queued instructions in order."""
        controller = _controller(
            pilot_config,
            invocation("complete", message="first done"),
            invocation("error", message="second impossible"),
            invocation("complete", message="third done"),
        )
        ids = controller.enqueue(["first", "  ", "second", "third"])

        all_ok = await controller.start_queue()

        assert len(ids) == 3
        assert all_ok is False
        statuses = [item.status for item in controller.queue.items]
        assert statuses == [
            QueueItemStatus.COMPLETED,
            QueueItemStatus.FAILED,
            QueueItemStatus.PENDING,
        ]
        assert controller.queue.items[1].error == "second impossible"

    def test_clear_queue(self, pilot_config):
        """Should drop everything when idle."""
        controller = _controller(pilot_config)
        controller.enqueue("a")
        controller.enqueue(["b", "c"])
        controller.clear_queue()
        assert len(controller.queue) == 0
