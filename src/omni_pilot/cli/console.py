"""
console.py - Console and output formatting

- err_console: stderr console for progress, panels, and prompts
- log_step / log_action / log_result / log_completion: one line per event
- ConsoleReporter: turns bus events into those lines

Results that scripts may want (JSON dumps, history listings) go to stdout;
everything else goes to stderr.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from omni_pilot.core import events
from omni_pilot.core.events import Event, EventBus
from omni_pilot.core.loop import RunOutcome

err_console = Console(stderr=True)
out_console = Console()


def one_line_preview(text: str, limit: int = 100) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[:limit] + "..."


def log_step(iteration: int, total: int, description: str) -> None:
    """Example output: [3/150] click left at (100, 200)"""
    step = Text()
    step.append(f"[{iteration}/{total}]", style="dim")
    step.append(" ")
    step.append(description, style="bold yellow")
    err_console.print(step)


def log_action(description: str, x: int | None = None, y: int | None = None) -> None:
    target = f" @ ({x}, {y})" if x is not None and y is not None else ""
    err_console.print(f"    [cyan]>[/cyan] {description}{target}", highlight=False)


def log_result(result: str, is_error: bool = False) -> None:
    if is_error:
        err_console.print(f"    [red]x[/red] {one_line_preview(result, 150)}", highlight=False)
    else:
        err_console.print(f"    -> {one_line_preview(result)}", highlight=False)


def log_completion(outcome: RunOutcome) -> None:
    """Example output: Completed in 4 iterations: opened the settings"""
    err_console.print()
    if outcome.success:
        err_console.print(
            f"[green]Completed[/green] in [bold]{outcome.iterations}[/bold] iterations: "
            f"{outcome.message or ''}"
        )
    elif outcome.final_status == "stopped":
        err_console.print(
            f"[yellow]{outcome.message}[/yellow] after {outcome.iterations} iterations"
        )
    else:
        err_console.print(
            f"[red]Failed[/red] ({outcome.final_status}) after "
            f"[bold]{outcome.iterations}[/bold] iterations: {outcome.message or ''}"
        )


def state_table(state: dict[str, Any]) -> Table:
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    for key in (
        "status",
        "iteration",
        "total_input_tokens",
        "total_output_tokens",
        "total_retries",
        "last_error",
    ):
        value = state.get(key)
        if value not in (None, ""):
            table.add_row(key, str(value))
    return table


class ConsoleReporter:
    """Prints run progress from bus events."""

    def __init__(self, bus: EventBus, stream_text: bool = False) -> None:
        self.stream_text = stream_text
        self._last_action: str | None = None
        self._last_result: str | None = None
        self._unsubscribe = bus.subscribe(self)

    def close(self) -> None:
        self._unsubscribe()

    def __call__(self, event: Event) -> None:
        payload = event.payload
        match event.name:
            case events.STATE:
                self._on_state(payload)
            case events.LLM_CHUNK if self.stream_text:
                err_console.print(payload.get("text", ""), end="", style="dim", highlight=False)
            case events.PARSE_ERROR:
                log_result(f"Could not use the response: {payload.get('error')}", is_error=True)
            case events.ACTION_INDICATOR:
                log_action(payload.get("description", ""), payload.get("x"), payload.get("y"))
            case events.CONFIRMATION_REQUIRED:
                err_console.print(
                    Panel(
                        f"{payload.get('description')}\n"
                        f"[dim]Denied automatically after {payload.get('timeout_ms')} ms[/dim]",
                        title="[bold red]Confirmation required[/bold red]",
                        border_style="red",
                        expand=False,
                    )
                )
            case events.QUEUE_ITEM_STARTED:
                err_console.print(
                    f"\n[bold]Queue {payload['index'] + 1}/{payload['total']}:[/bold] "
                    f"{payload['instruction']}"
                )
            case events.QUEUE_ITEM_FAILED:
                log_result(f"Queue item failed: {payload.get('error')}", is_error=True)

    def _on_state(self, state: dict[str, Any]) -> None:
        action = state.get("last_action")
        if action and action != self._last_action:
            self._last_action = action
            log_step(state.get("iteration", 0), state.get("max_iterations", 0), action)
        result = state.get("last_result")
        if result and result != self._last_result:
            self._last_result = result
            history = state.get("action_history") or []
            failed = bool(history) and history[-1].get("is_error", False)
            log_result(result, is_error=failed)


__all__ = [
    "ConsoleReporter",
    "err_console",
    "log_action",
    "log_completion",
    "log_result",
    "log_step",
    "one_line_preview",
    "out_console",
    "state_table",
]
