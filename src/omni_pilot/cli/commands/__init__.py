"""
commands - CLI command definitions

Submodules:
- run.py: run one instruction
- queue.py: run several instructions in sequence
- config.py: inspect settings
- history.py: recent instructions and session logs
"""

from __future__ import annotations

from .config import config_app, register_config_command
from .history import history_app, register_history_command
from .queue import register_queue_command
from .run import register_run_command

__all__ = [
    "config_app",
    "history_app",
    "register_config_command",
    "register_history_command",
    "register_queue_command",
    "register_run_command",
]
