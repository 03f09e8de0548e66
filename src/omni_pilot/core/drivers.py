"""
drivers.py - Interfaces to the screen and the input devices

Both collaborators are blocking (OS capture and input APIs are). The
executor and the loop call them through ``run_blocking`` so the event loop
keeps serving events and control commands meanwhile.
"""

from __future__ import annotations

import asyncio
import base64
import functools
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


@dataclass(frozen=True)
class Capture:
    """One screenshot."""

    data: bytes
    width: int
    height: int
    media_type: str = "image/png"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@runtime_checkable
class ScreenSampler(Protocol):
    def capture(self) -> Capture: ...


@runtime_checkable
class InputDriver(Protocol):
    """Primitive pointer and keyboard operations. Every call may raise."""

    def click(self, x: int, y: int, button: str = "left") -> None: ...

    def double_click(self, x: int, y: int) -> None: ...

    def triple_click(self, x: int, y: int) -> None: ...

    def move_to(self, x: int, y: int) -> None: ...

    def drag(
        self,
        start: tuple[int, int],
        end: tuple[int, int],
        button: str = "left",
        duration_ms: int = 500,
    ) -> None: ...

    def scroll(self, x: int, y: int, direction: str, amount: int) -> None: ...

    def type_text(self, text: str) -> None: ...

    def key(self, key: str, modifiers: list[str]) -> None: ...


async def run_blocking(func: Callable[..., T], *args, **kwargs) -> T:
    """Run a blocking driver call on the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


__all__ = ["Capture", "InputDriver", "ScreenSampler", "run_blocking"]
