"""
omni_pilot - A vision model operating the computer on your behalf

The loop samples the screen, asks a model for the next action, performs it
with the mouse and keyboard, and checks that the screen changed.

Usage:
    from omni_pilot import AgentController, load_config
    from omni_pilot.desktop import DesktopDriver, DesktopSampler

    controller = AgentController(load_config(), DesktopSampler(), DesktopDriver())
    outcome = await controller.start("open the settings and enable dark mode")
"""

from __future__ import annotations

from omni_pilot.config.models import PilotConfig, load_config
from omni_pilot.core.controller import AgentController
from omni_pilot.core.loop import AgentLoop, RunOutcome

__version__ = "0.1.0"

__all__ = [
    "AgentController",
    "AgentLoop",
    "PilotConfig",
    "RunOutcome",
    "__version__",
    "load_config",
]
