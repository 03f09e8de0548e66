"""
test_desktop.py - pyautogui and Pillow adapters with the libraries mocked
"""

from __future__ import annotations

import sys
from unittest.mock import MagicMock

import pytest

from omni_pilot.core.errors import ConfigError
from omni_pilot.desktop import DesktopDriver, DesktopSampler


@pytest.fixture
def gui(monkeypatch) -> MagicMock:
    fake = MagicMock()
    monkeypatch.setitem(sys.modules, "pyautogui", fake)
    return fake


class TestDesktopDriver:
    """Tests for the pyautogui driver."""

    def test_settings_applied(self, gui):
        """Should enable the corner failsafe and drop the built-in pause."""
        DesktopDriver()
        assert gui.FAILSAFE is True
        assert gui.PAUSE == 0.0

    def test_pointer(self, gui):
        """Should forward pointer calls."""
        driver = DesktopDriver()
        driver.click(10, 20, button="right")
        driver.double_click(1, 2)
        driver.drag((0, 0), (50, 60), duration_ms=250)

        gui.click.assert_called_once_with(10, 20, button="right")
        gui.doubleClick.assert_called_once_with(1, 2)
        gui.moveTo.assert_called_once_with(0, 0)
        gui.dragTo.assert_called_once_with(50, 60, duration=0.25, button="left")

    @pytest.mark.parametrize(
        "direction, method, clicks",
        [
            ("up", "scroll", 3),
            ("down", "scroll", -3),
            ("left", "hscroll", -3),
            ("right", "hscroll", 3),
        ],
    )
    def test_scroll(self, gui, direction, method, clicks):
        """Should map directions onto signed scroll clicks."""
        DesktopDriver().scroll(5, 6, direction, 3)
        getattr(gui, method).assert_called_once_with(clicks, x=5, y=6)

    def test_unknown_scroll(self, gui):
        """Should reject an unknown direction."""
        with pytest.raises(ValueError):
            DesktopDriver().scroll(0, 0, "sideways", 1)

    def test_keys(self, gui, monkeypatch):
        """Should press single keys and chord combinations."""
        monkeypatch.setattr(sys, "platform", "darwin")
        driver = DesktopDriver()
        driver.key("enter", [])
        driver.key("c", ["meta", "shift"])
        driver.type_text("hello")

        gui.press.assert_called_once_with("enter")
        gui.hotkey.assert_called_once_with("command", "shift", "c")
        gui.write.assert_called_once_with("hello")

    def test_meta_elsewhere(self, gui, monkeypatch):
        """Should map meta to the Windows key off macOS."""
        monkeypatch.setattr(sys, "platform", "linux")
        DesktopDriver().key("l", ["meta"])
        gui.hotkey.assert_called_once_with("win", "l")

    def test_missing_library(self, monkeypatch):
        """Should explain how to install the desktop extra."""
        monkeypatch.setitem(sys.modules, "pyautogui", None)
        with pytest.raises(ConfigError, match="desktop extra"):
            DesktopDriver()


class TestDesktopSampler:
    """Tests for the Pillow screen grabber."""

    def test_capture(self, monkeypatch):
        """Should return PNG bytes with the image size."""
        image = MagicMock(width=1920, height=1080)
        image.save.side_effect = lambda buffer, format: buffer.write(b"\x89PNG")
        grab = MagicMock()
        grab.grab.return_value = image
        monkeypatch.setitem(sys.modules, "PIL.ImageGrab", grab)

        capture = DesktopSampler().capture()

        assert capture.data == b"\x89PNG"
        assert (capture.width, capture.height) == (1920, 1080)
        assert capture.media_type == "image/png"
        assert image.save.call_args.kwargs["format"] == "PNG"
