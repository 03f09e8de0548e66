"""
config.py - Inspect the effective configuration

Usage:
    omni-pilot config show            # merged settings as YAML
    omni-pilot config show --json     # validated PilotConfig as JSON
    omni-pilot config get agent.max_iterations
    omni-pilot config path
"""

from __future__ import annotations

import json
from typing import Annotated

import typer
import yaml

from omni_pilot.config.models import load_config
from omni_pilot.config.settings import DEFAULTS_PATH, get_setting, get_settings
from omni_pilot.core.errors import ConfigError

from ..console import err_console, out_console

config_app = typer.Typer(
    name="config",
    help="Show settings and where they come from",
    add_completion=False,
)

_SECRET_KEYS = {"api_key"}


def _redact(data: dict) -> dict:
    redacted = {}
    for key, value in data.items():
        if isinstance(value, dict):
            redacted[key] = _redact(value)
        elif key in _SECRET_KEYS and value:
            redacted[key] = "***"
        else:
            redacted[key] = value
    return redacted


@config_app.command("show")
def show_config(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Validated configuration as JSON")
    ] = False,
):
    """Print the merged settings (API keys redacted)."""
    if json_output:
        try:
            config = load_config()
        except ConfigError as e:
            err_console.print(f"[red]{e}[/red]")
            raise typer.Exit(1) from e
        out_console.print_json(json.dumps(_redact(config.model_dump(mode="json"))))
        return
    text = yaml.safe_dump(_redact(get_settings().as_dict()), sort_keys=False)
    out_console.print(text, highlight=False, markup=False)


@config_app.command("get")
def get_config_value(
    key: Annotated[str, typer.Argument(help="Dotted key, e.g. agent.max_iterations")],
):
    """Print one setting."""
    value = get_setting(key)
    if value is None:
        err_console.print(f"[yellow]{key} is not set[/yellow]")
        raise typer.Exit(1)
    if key.rsplit(".", 1)[-1] in _SECRET_KEYS:
        value = "***"
    if isinstance(value, dict):
        value = json.dumps(value)
    out_console.print(value, markup=False, soft_wrap=True)


@config_app.command("path")
def config_paths():
    """Show the defaults file and the user settings file."""
    user_path = get_settings().user_settings_path
    out_console.print(f"defaults: {DEFAULTS_PATH}", markup=False, soft_wrap=True)
    marker = "" if user_path.exists() else " (not created)"
    out_console.print(f"user:     {user_path}{marker}", markup=False, soft_wrap=True)


def register_config_command(parent_app: typer.Typer):
    """Register the config command with the parent app."""
    parent_app.add_typer(config_app, name="config")


__all__ = ["config_app", "register_config_command"]
