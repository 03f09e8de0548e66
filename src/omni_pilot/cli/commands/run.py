"""
run.py - Run one instruction

Usage:
    omni-pilot run "open the settings and enable dark mode"
    omni-pilot run "fill in the signup form" --preview
    omni-pilot run "close the window" --provider openai --model gpt-4o --speed 2
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Optional

import typer

from omni_pilot.config.models import PilotConfig, load_config
from omni_pilot.core.errors import PilotError

from ..console import err_console, log_completion, state_table
from ..runner import build_controller, drive


def config_from_options(
    provider: str | None = None,
    model: str | None = None,
    preview: bool | None = None,
    max_iterations: int | None = None,
    speed: float | None = None,
    no_confirm: bool = False,
) -> PilotConfig:
    """Layer command-line options over the loaded configuration."""
    provider_changes: dict = {}
    if provider:
        provider_changes["kind"] = provider
    if model:
        provider_changes["model"] = model
    agent_changes: dict = {}
    if preview is not None:
        agent_changes["preview_mode"] = preview
    if max_iterations is not None:
        agent_changes["max_iterations"] = max_iterations
    if speed is not None:
        agent_changes["speed_multiplier"] = speed
    if no_confirm:
        agent_changes["confirm_dangerous"] = False
    return load_config({"provider": provider_changes, "agent": agent_changes})


def run_instruction(
    instruction: Annotated[str, typer.Argument(help="What the agent should do")],
    provider: Annotated[
        Optional[str], typer.Option("--provider", "-p", help="anthropic, openai, or ollama")
    ] = None,
    model: Annotated[Optional[str], typer.Option("--model", "-m", help="Model name")] = None,
    preview: Annotated[
        bool, typer.Option("--preview", help="Decide actions without executing them")
    ] = False,
    max_iterations: Annotated[
        Optional[int], typer.Option("--max-iterations", "-n", help="Iteration cap")
    ] = None,
    speed: Annotated[
        Optional[float], typer.Option("--speed", help="Delay multiplier (0.25 to 3.0)")
    ] = None,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Approve dangerous actions automatically")
    ] = False,
    no_confirm: Annotated[
        bool, typer.Option("--no-confirm", help="Do not gate dangerous actions at all")
    ] = False,
    stream: Annotated[
        bool, typer.Option("--stream", help="Echo model output as it arrives")
    ] = False,
):
    """Drive the screen until the instruction is done."""
    try:
        config = config_from_options(
            provider=provider,
            model=model,
            preview=preview or None,
            max_iterations=max_iterations,
            speed=speed,
            no_confirm=no_confirm,
        )
        controller = build_controller(config)
    except PilotError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(2) from e

    err_console.print(f"\n[bold]Starting:[/bold] {instruction}")
    if config.agent.preview_mode:
        err_console.print("[dim]Preview mode: actions are decided but not executed[/dim]")

    async def _run():
        return await drive(
            controller,
            lambda: controller.start(instruction),
            auto_confirm=yes,
            stream_text=stream,
        )

    try:
        outcome = asyncio.run(_run())
    except PilotError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    log_completion(outcome)
    err_console.print(state_table(controller.snapshot().model_dump(mode="json")))
    if not outcome.success:
        raise typer.Exit(1)


def register_run_command(parent_app: typer.Typer):
    """Register the run command with the parent app."""
    parent_app.command("run")(run_instruction)


__all__ = ["config_from_options", "register_run_command", "run_instruction"]
