"""
logging.py - Structured logging for the pilot runtime

Every module logs through structlog with event-style names and key=value
context, rendered by a single processor into one line per event:

    2026-01-21 10:30:45 [INFO    ] omni_pilot.loop: loop.iteration iteration=3 status=running
    2026-01-21 10:30:46 [WARNING ] omni_pilot.verify: verify.effect_not_observed attempts=3

Usage:
    from omni_pilot.config.logging import configure_logging, get_logger
    configure_logging(level="INFO")
    log = get_logger("omni_pilot.loop")
    log.info("loop.started", instruction="open the browser")
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from typing import Any

import structlog

# =============================================================================
# ANSI Color Codes
# =============================================================================


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    DIM = "\033[2m"
    BOLD = "\033[1m"
    REVERSE = "\033[7m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    BRIGHT_BLACK = "\033[90m"


LEVEL_COLORS = {
    "DEBUG": f"{Colors.BRIGHT_BLACK}{Colors.DIM}",
    "INFO": Colors.GREEN,
    "WARNING": Colors.YELLOW,
    "ERROR": f"{Colors.RED}{Colors.BOLD}",
    "CRITICAL": f"{Colors.RED}{Colors.BOLD}{Colors.REVERSE}",
}

_RESERVED_KEYS = ("logger", "logger_name", "event", "level", "timestamp", "_colors")

# Keys whose values can carry screenshots or long model output
_TRUNCATE_KEYS = ("content", "text", "response", "feedback")
_MAX_VALUE_LEN = 200


# =============================================================================
# Renderer
# =============================================================================


def _shorten(key: str, value: Any) -> Any:
    if key in _TRUNCATE_KEYS and isinstance(value, str) and len(value) > _MAX_VALUE_LEN:
        return value[:_MAX_VALUE_LEN] + "..."
    return value


def render_event(
    _logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> str:
    """Render one structlog event as a single line.

    Args:
        _logger: The wrapped logger (unused)
        method_name: The log method name (info, warning, ...)
        event_dict: The event dictionary built by the processor chain

    Returns:
        The rendered line, colored when colors are enabled
    """
    colors = event_dict.pop("_colors", None)
    if colors is None:
        colors = _use_colors

    level = method_name.upper()
    timestamp = event_dict.get("timestamp") or datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    name = event_dict.get("logger", "") or event_dict.get("logger_name", "")
    message = str(event_dict.get("event", ""))
    extra = {k: _shorten(k, v) for k, v in event_dict.items() if k not in _RESERVED_KEYS}

    if not colors:
        parts = [f"{timestamp} [{level:<8}]"]
        if name:
            parts.append(f"{name}:")
        parts.append(message)
        parts.extend(f"{k}={v}" for k, v in extra.items())
        return " ".join(parts)

    color = LEVEL_COLORS.get(level, "")
    parts = [
        f"{Colors.BRIGHT_BLACK}{timestamp}{Colors.RESET}",
        f"{color}[{level:<8}]{Colors.RESET}",
    ]
    if name:
        parts.append(f"{Colors.CYAN}{name}:{Colors.RESET}")
    parts.append(message)
    for key, value in extra.items():
        parts.append(f"{Colors.MAGENTA}{key}={Colors.RESET}{Colors.GREEN}{value}{Colors.RESET}")
    return " ".join(parts)


# =============================================================================
# Third-party noise
# =============================================================================


def _quiet_third_party(level: int) -> None:
    """Keep HTTP client tracing out of the agent log."""
    for name in ("httpcore.connection", "httpcore.http11", "httpcore.http2"):
        logging.getLogger(name).setLevel(logging.WARNING)

    chatty = logging.WARNING if level > logging.DEBUG else logging.INFO
    for name in ("httpx", "httpcore", "anthropic", "PIL"):
        logging.getLogger(name).setLevel(chatty)


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_use_colors = False
_level = logging.INFO


def configure_logging(
    level: str = "INFO",
    colors: bool | None = None,
    verbose: bool = False,
    force: bool = False,
) -> None:
    """Configure stdlib logging and structlog once per process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        colors: Force ANSI colors on or off. None auto-detects a TTY.
        verbose: Shortcut for DEBUG
        force: Reconfigure even if already configured
    """
    global _configured, _use_colors, _level

    if _configured and not force:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)
    if verbose:
        log_level = logging.DEBUG
    _level = log_level
    os.environ["OMNI_PILOT_LOG_LEVEL"] = logging.getLevelName(log_level)

    if colors is None:
        colors = sys.stderr.isatty()
    _use_colors = colors

    root = logging.getLogger()
    root.handlers = []
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            render_event,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _quiet_third_party(log_level)
    _configured = True


def get_logger(name: str = "omni_pilot") -> structlog.stdlib.BoundLogger:
    """Get a structured logger bound to ``name``."""
    return structlog.get_logger(name)


def is_verbose() -> bool:
    """True when DEBUG logging is enabled."""
    return _level <= logging.DEBUG


__all__ = [
    "Colors",
    "configure_logging",
    "get_logger",
    "is_verbose",
    "render_event",
]
