"""
desktop.py - Real screen and input devices via pyautogui and Pillow

Optional: install with ``pip install omni-pilot[desktop]``. Both classes are
blocking, as the loop expects; it calls them off the event loop.

Usage:
    from omni_pilot.desktop import DesktopSampler, DesktopDriver
    controller = AgentController(config, DesktopSampler(), DesktopDriver())
"""

from __future__ import annotations

import importlib
import io
import sys
from typing import Any

from omni_pilot.config.logging import get_logger
from omni_pilot.core.drivers import Capture
from omni_pilot.core.errors import ConfigError

log = get_logger("omni_pilot.desktop")


def _require(module: str) -> Any:
    try:
        return importlib.import_module(module)
    except ImportError as e:
        raise ConfigError(
            f"{module} is not installed; install the desktop extra: "
            "pip install 'omni-pilot[desktop]'"
        ) from e


def _meta_key() -> str:
    return "command" if sys.platform == "darwin" else "win"


class DesktopSampler:
    """Primary-screen PNG captures through ``PIL.ImageGrab``."""

    def __init__(self) -> None:
        self._grab = _require("PIL.ImageGrab")

    def capture(self) -> Capture:
        image = self._grab.grab()
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return Capture(
            data=buffer.getvalue(), width=image.width, height=image.height, media_type="image/png"
        )


class DesktopDriver:
    """Pointer and keyboard through ``pyautogui``."""

    def __init__(self, failsafe: bool = True, pause: float = 0.0) -> None:
        self._gui = _require("pyautogui")
        # Slamming the pointer into a corner raises FailSafeException mid-run
        self._gui.FAILSAFE = failsafe
        self._gui.PAUSE = pause

    def click(self, x: int, y: int, button: str = "left") -> None:
        self._gui.click(x, y, button=button)

    def double_click(self, x: int, y: int) -> None:
        self._gui.doubleClick(x, y)

    def triple_click(self, x: int, y: int) -> None:
        self._gui.tripleClick(x, y)

    def move_to(self, x: int, y: int) -> None:
        self._gui.moveTo(x, y)

    def drag(
        self,
        start: tuple[int, int],
        end: tuple[int, int],
        button: str = "left",
        duration_ms: int = 500,
    ) -> None:
        self._gui.moveTo(*start)
        self._gui.dragTo(*end, duration=duration_ms / 1000, button=button)

    def scroll(self, x: int, y: int, direction: str, amount: int) -> None:
        clicks = amount
        match direction:
            case "up":
                self._gui.scroll(clicks, x=x, y=y)
            case "down":
                self._gui.scroll(-clicks, x=x, y=y)
            case "left":
                self._gui.hscroll(-clicks, x=x, y=y)
            case "right":
                self._gui.hscroll(clicks, x=x, y=y)
            case _:
                raise ValueError(f"Unknown scroll direction: {direction}")

    def type_text(self, text: str) -> None:
        self._gui.write(text)

    def key(self, key: str, modifiers: list[str]) -> None:
        names = [_meta_key() if m == "meta" else m for m in modifiers]
        if names:
            self._gui.hotkey(*names, key)
        else:
            self._gui.press(key)
        log.debug("desktop.key", key=key, modifiers=names)


__all__ = ["DesktopDriver", "DesktopSampler"]
