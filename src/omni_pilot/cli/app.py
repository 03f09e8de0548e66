"""app.py - Typer application configuration"""

from __future__ import annotations

from typing import Annotated, Optional

import typer

from omni_pilot.config.logging import configure_logging
from omni_pilot.config.settings import get_setting, set_configuration_directory

app = typer.Typer(
    name="omni-pilot",
    help="Omni Pilot - let a vision model drive your desktop",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    conf: Annotated[
        Optional[str], typer.Option("--conf", help="Directory holding settings.yaml")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Global options."""
    if conf:
        set_configuration_directory(conf)
    level = "DEBUG" if verbose else str(get_setting("logging.level", "INFO"))
    configure_logging(level=level, verbose=verbose, force=True)


def main():
    """Entry point for CLI (used by pyproject.toml entry_points)."""
    app()


# Register subcommands
from .commands import (  # noqa: E402
    register_config_command,
    register_history_command,
    register_queue_command,
    register_run_command,
)

register_run_command(app)
register_queue_command(app)
register_config_command(app)
register_history_command(app)


__all__ = ["app", "main"]
