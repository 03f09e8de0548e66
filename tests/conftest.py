"""
Shared Test Fixtures - scripted model, fake screen, recording input driver

Nothing here touches the real desktop or the network:

- FakeSampler returns synthetic PNG bytes; "changing" mode makes every
  capture unique, "static" mode makes them all identical.
- FakeDriver records every call and can fail (or block) on demand.
- ScriptedProvider answers from a list of replies and exceptions.

Usage:
    def test_something(make_loop, scripted):
        loop = make_loop(scripted(invocation("complete", message="done")))
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from omni_pilot.config.models import AgentConfig
from omni_pilot.config.settings import CONFIG_HOME_ENV, Settings
from omni_pilot.core.cancel import CancellationToken
from omni_pilot.core.drivers import Capture
from omni_pilot.core.events import EventBus, EventRecorder
from omni_pilot.core.loop import AgentLoop
from omni_pilot.core.state import RunStateOwner
from omni_pilot.providers.base import (
    ActionSchema,
    PlainText,
    ProviderResponse,
    ToolInvocation,
    Usage,
)

# =============================================================================
# Reply Builders
# =============================================================================

_invocation_ids = itertools.count(1)


def invocation(name: str, **args: Any) -> ToolInvocation:
    """Structured reply naming an action tool."""
    return ToolInvocation(id=f"toolu_{next(_invocation_ids):04d}", name=name, args=args)


def text_reply(text: str) -> PlainText:
    """Prompt-embedded reply."""
    return PlainText(text)


# =============================================================================
# Fakes
# =============================================================================


class FakeSampler:
    """Screen sampler returning synthetic captures."""

    def __init__(self, mode: str = "changing", width: int = 1280, height: int = 800):
        self.mode = mode
        self.width = width
        self.height = height
        self.count = 0
        self.failures: list[Exception] = []

    def capture(self) -> Capture:
        self.count += 1
        if self.failures:
            raise self.failures.pop(0)
        marker = b"static" if self.mode == "static" else str(self.count).encode()
        return Capture(data=b"\x89PNG-" + marker, width=self.width, height=self.height)


class FakeDriver:
    """Input driver that records calls instead of moving anything.

    Attributes:
        calls: Completed calls as (method, args) tuples
        attempts: Every call made, including ones that failed
        fail_at: 1-based attempt number that raises
        block_on: Method name that waits for ``release`` before finishing
    """

    def __init__(self, fail_at: int | None = None, block_on: str | None = None):
        self.calls: list[tuple[str, tuple]] = []
        self.attempts = 0
        self.fail_at = fail_at
        self.block_on = block_on
        self.entered = threading.Event()
        self.release = threading.Event()

    def _record(self, method: str, *args: Any) -> None:
        self.attempts += 1
        if self.fail_at is not None and self.attempts == self.fail_at:
            raise RuntimeError(f"{method} exploded")
        if method == self.block_on:
            self.entered.set()
            self.release.wait(timeout=5)
        self.calls.append((method, args))

    def click(self, x: int, y: int, button: str = "left") -> None:
        self._record("click", x, y, button)

    def double_click(self, x: int, y: int) -> None:
        self._record("double_click", x, y)

    def triple_click(self, x: int, y: int) -> None:
        self._record("triple_click", x, y)

    def move_to(self, x: int, y: int) -> None:
        self._record("move_to", x, y)

    def drag(self, start, end, button="left", duration_ms=500) -> None:
        self._record("drag", start, end, button, duration_ms)

    def scroll(self, x: int, y: int, direction: str, amount: int) -> None:
        self._record("scroll", x, y, direction, amount)

    def type_text(self, text: str) -> None:
        self._record("type_text", text)

    def key(self, key: str, modifiers: list[str]) -> None:
        self._record("key", key, list(modifiers))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


class ScriptedProvider:
    """Provider that replays a script of replies; exceptions are raised."""

    name = "scripted"

    def __init__(self, script: Sequence[Any], structured: bool = True):
        self.script = list(script)
        self.structured = structured
        self.requests: list[tuple[list, ActionSchema]] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.closed = False

    def supports_structured_calls(self) -> bool:
        return self.structured

    async def send(self, conversation, schema, on_chunk=None, cancel=None) -> ProviderResponse:
        self.requests.append((list(conversation), schema))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if not self.script:
            raise AssertionError("provider script exhausted")
        reply = self.script.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if on_chunk is not None and isinstance(reply, PlainText):
            on_chunk(reply.text)
        return ProviderResponse(reply, usage=Usage(100, 20), elapsed=0.01, model="scripted")

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_homes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point config and data directories at a temporary location."""
    config_home = tmp_path / "config"
    data_home = tmp_path / "data"
    config_home.mkdir()
    monkeypatch.setenv(CONFIG_HOME_ENV, str(config_home))
    monkeypatch.setenv("XDG_DATA_HOME", str(data_home))
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(Settings, "_instance", None)
    return tmp_path


@pytest.fixture
def user_settings(isolated_homes: Path):
    """Write the user settings.yaml for this test."""

    def write(text: str) -> Path:
        path = isolated_homes / "config" / "settings.yaml"
        path.write_text(text, encoding="utf-8")
        Settings().reload()
        return path

    return write


# =============================================================================
# Run Fixtures
# =============================================================================


@pytest.fixture
def fast_config() -> AgentConfig:
    """Agent settings with every delay at its shortest."""
    return AgentConfig(
        speed_multiplier=3.0,
        retry_delay_ms=1,
        confirmation_timeout_ms=200,
        task_tips=False,
    )


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    """Every event emitted on ``bus``."""
    recorder = EventRecorder()
    bus.subscribe(recorder)
    return recorder


@pytest.fixture
def state(bus: EventBus) -> RunStateOwner:
    return RunStateOwner(bus)


@pytest.fixture
def cancel() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def sampler() -> FakeSampler:
    return FakeSampler()


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def scripted():
    """Build a ScriptedProvider from replies."""

    def build(*replies: Any, structured: bool = True) -> ScriptedProvider:
        return ScriptedProvider(replies, structured=structured)

    return build


@pytest.fixture
def make_loop(fast_config, state, cancel, sampler, driver):
    """Build an AgentLoop over the shared fakes."""

    def build(provider: ScriptedProvider, **config_changes: Any) -> AgentLoop:
        config = fast_config.model_copy(update=config_changes)
        return AgentLoop(provider, sampler, driver, config=config, state=state, cancel=cancel)

    return build
