"""
cli - Command-line front end

Submodules:
- app.py: Typer application and global options
- console.py: rich output helpers (stderr for progress, stdout for data)
- runner.py: controller wiring, confirmation prompts, Ctrl+C handling
- commands/: run, queue, config, history

Usage:
    from omni_pilot.cli import app, main

    app()
"""

from __future__ import annotations

from .app import app, main
from .console import err_console

__all__ = [
    "app",
    "err_console",
    "main",
]
