"""
history.py - Recent instructions and saved sessions

Usage:
    omni-pilot history list
    omni-pilot history show               # newest saved session as text
    omni-pilot history clear
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from omni_pilot.config.models import load_config
from omni_pilot.config.settings import data_home
from omni_pilot.core.history import InstructionHistory, SessionHistory

from ..console import err_console, out_console

history_app = typer.Typer(
    name="history",
    help="Recent instructions and session logs",
    add_completion=False,
)


def _history_dir() -> Path:
    directory = load_config().history.directory
    return Path(directory).expanduser() if directory else data_home()


def _instruction_history() -> InstructionHistory:
    return InstructionHistory.load(_history_dir() / "history.json")


@history_app.command("list")
def list_history(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Entries to show")] = 20,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
):
    """Recent instructions, newest first."""
    entries = _instruction_history().entries[:limit]
    if json_output:
        out_console.print_json(json.dumps([e.model_dump(mode="json") for e in entries]))
        return
    if not entries:
        err_console.print("[dim]No history yet[/dim]")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("When", style="dim")
    table.add_column("Instruction")
    table.add_column("Result")
    for entry in entries:
        result = "[green]ok[/green]" if entry.success else "[red]failed[/red]"
        table.add_row(f"{entry.timestamp:%Y-%m-%d %H:%M}", entry.instruction, result)
    out_console.print(table)


@history_app.command("show")
def show_session(
    path: Annotated[
        Optional[Path], typer.Argument(help="Session file; defaults to the newest")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
):
    """Print a saved session log."""
    if path is None:
        sessions = sorted((_history_dir() / "sessions").glob("*.json"))
        if not sessions:
            err_console.print("[dim]No saved sessions[/dim]")
            raise typer.Exit(1)
        path = sessions[-1]
    session = SessionHistory.model_validate_json(path.read_text(encoding="utf-8"))
    if json_output:
        out_console.print_json(json.dumps(session.to_json()))
    else:
        out_console.print(session.to_text(), markup=False, highlight=False, soft_wrap=True)


@history_app.command("clear")
def clear_history():
    """Forget recent instructions (session logs are kept)."""
    history = _instruction_history()
    count = len(history)
    history.clear()
    history.save()
    err_console.print(f"Cleared {count} entries")


def register_history_command(parent_app: typer.Typer):
    """Register the history command with the parent app."""
    parent_app.add_typer(history_app, name="history")


__all__ = ["history_app", "register_history_command"]
