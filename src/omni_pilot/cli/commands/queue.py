"""
queue.py - Run several instructions in sequence

Usage:
    omni-pilot queue "open the mail app" "archive all newsletters"
    omni-pilot queue --file tasks.txt --failure-mode continue --delay-ms 2000
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from omni_pilot.config.models import load_config
from omni_pilot.core.errors import PilotError
from omni_pilot.core.queue import QueueItemStatus

from ..console import err_console
from ..runner import build_controller, drive

_STATUS_STYLE = {
    QueueItemStatus.COMPLETED: "green",
    QueueItemStatus.FAILED: "red",
    QueueItemStatus.RUNNING: "yellow",
    QueueItemStatus.PENDING: "dim",
}


def read_instructions(path: Path) -> list[str]:
    """One instruction per line; blank lines and ``#`` comments are skipped."""
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")]


def run_queue(
    instructions: Annotated[
        Optional[list[str]], typer.Argument(help="Instructions, run in order")
    ] = None,
    file: Annotated[
        Optional[Path], typer.Option("--file", "-f", help="Read instructions from a file")
    ] = None,
    failure_mode: Annotated[
        Optional[str], typer.Option("--failure-mode", help="stop or continue after a failure")
    ] = None,
    delay_ms: Annotated[
        Optional[int], typer.Option("--delay-ms", help="Pause between instructions")
    ] = None,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Approve dangerous actions automatically")
    ] = False,
):
    """Run queued instructions one after another."""
    items = list(instructions or [])
    if file is not None:
        items.extend(read_instructions(file))
    if not items:
        err_console.print("[red]Nothing to run: pass instructions or --file[/red]")
        raise typer.Exit(2)

    queue_changes: dict = {}
    if failure_mode:
        queue_changes["failure_mode"] = failure_mode
    if delay_ms is not None:
        queue_changes["delay_ms"] = delay_ms
    try:
        config = load_config({"queue": queue_changes})
        controller = build_controller(config)
    except PilotError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(2) from e

    controller.enqueue(items)

    async def _run():
        return await drive(controller, controller.start_queue, auto_confirm=yes)

    try:
        all_ok = asyncio.run(_run())
    except PilotError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    table = Table(title="Queue", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Instruction")
    table.add_column("Status")
    table.add_column("Detail", style="dim")
    for number, item in enumerate(controller.queue.items, start=1):
        style = _STATUS_STYLE[item.status]
        table.add_row(
            str(number),
            item.instruction,
            f"[{style}]{item.status.value}[/{style}]",
            item.error or item.result or "",
        )
    err_console.print(table)
    if not all_ok:
        raise typer.Exit(1)


def register_queue_command(parent_app: typer.Typer):
    """Register the queue command with the parent app."""
    parent_app.command("queue")(run_queue)


__all__ = ["read_instructions", "register_queue_command", "run_queue"]
