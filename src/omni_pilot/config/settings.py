"""
Pilot Settings - Layered YAML configuration

Two layers, merged key by key:
- System: ``omni_pilot/config/defaults.yaml`` shipped with the package
- User:   ``$OMNI_PILOT_CONFIG_HOME/settings.yaml``
          (default ``~/.config/omni-pilot/settings.yaml``)

The CLI flag ``--conf <dir>`` points the user layer at another directory for
a single run. ``get_setting()`` returns the merged effective value using dot
notation, e.g. ``get_setting("agent.max_iterations")``.
"""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path
from typing import Any

import yaml

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")
CONFIG_HOME_ENV = "OMNI_PILOT_CONFIG_HOME"


def config_home() -> Path:
    """Directory holding the user layer."""
    override = os.environ.get(CONFIG_HOME_ENV)
    if override:
        return Path(override).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / "omni-pilot"


def data_home() -> Path:
    """Directory for history and session logs."""
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".local" / "share"
    return base / "omni-pilot"


class Settings:
    """
    Settings singleton.

    Logic:
    1. Parse ``--conf`` from argv and update ``OMNI_PILOT_CONFIG_HOME``.
    2. Load packaged defaults.
    3. Load the user ``settings.yaml`` if present.
    4. Merge User > Defaults.
    """

    _instance: Settings | None = None
    _instance_lock = threading.Lock()
    _loaded: bool = False

    def __new__(cls) -> Settings:
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        # __init__ runs on every Settings() call; keep loaded data
        if not hasattr(self, "_data"):
            self._data: dict[str, Any] = {}

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            with self._instance_lock:
                if not self._loaded:
                    self._load()
                    self._loaded = True

    def _parse_cli_conf(self) -> str | None:
        """Extract ``--conf`` from sys.argv without involving the CLI parser."""
        args = sys.argv
        for i, arg in enumerate(args):
            if arg == "--conf" and i + 1 < len(args):
                return args[i + 1]
            if arg.startswith("--conf="):
                return arg.split("=", 1)[1]
        return None

    def _load(self) -> None:
        cli_conf_dir = self._parse_cli_conf()
        if cli_conf_dir:
            os.environ[CONFIG_HOME_ENV] = cli_conf_dir

        defaults = self._read_yaml(DEFAULTS_PATH) if DEFAULTS_PATH.exists() else {}

        user_config: dict[str, Any] = {}
        user_path = config_home() / "settings.yaml"
        if user_path.exists():
            user_config = self._read_yaml(user_path)

        self._data = self._deep_merge(defaults, user_config)

    def _read_yaml(self, path: Path) -> dict[str, Any]:
        """Read a YAML mapping; unreadable or non-mapping files count as empty."""
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError):
            return {}
        return loaded if isinstance(loaded, dict) else {}

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Recursive merge; override values replace base values."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value using dot notation (e.g., 'provider.model')."""
        self._ensure_loaded()
        value: Any = self._data
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def get_section(self, section: str) -> dict[str, Any]:
        """Get an entire settings section."""
        self._ensure_loaded()
        value = self._data.get(section, {})
        return dict(value) if isinstance(value, dict) else {}

    def as_dict(self) -> dict[str, Any]:
        self._ensure_loaded()
        return dict(self._data)

    def reload(self) -> None:
        """Force reload from disk."""
        with self._instance_lock:
            self._loaded = False
            self._load()
            self._loaded = True

    @property
    def user_settings_path(self) -> Path:
        return config_home() / "settings.yaml"


def set_configuration_directory(path: str | os.PathLike) -> None:
    """Point the user layer at ``path`` and reload."""
    os.environ[CONFIG_HOME_ENV] = str(Path(path).expanduser())
    Settings().reload()


def get_setting(key: str, default: Any = None) -> Any:
    """Get a setting value directly."""
    return Settings().get(key, default)


def get_settings() -> Settings:
    """Get the Settings singleton."""
    return Settings()


__all__ = [
    "Settings",
    "config_home",
    "data_home",
    "get_setting",
    "get_settings",
    "set_configuration_directory",
]
