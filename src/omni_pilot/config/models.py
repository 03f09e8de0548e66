"""
models.py - Typed configuration for the pilot runtime

Settings come in as a merged YAML dict (see settings.py) and are validated
into pydantic models before anything runs. Code below the CLI only ever sees
``PilotConfig``.

Usage:
    from omni_pilot.config.models import load_config
    config = load_config()
    config.agent.max_iterations
"""

from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from omni_pilot.core.errors import ConfigError

from .settings import get_settings

ProviderKind = Literal["anthropic", "openai", "ollama"]

SPEED_MIN = 0.25
SPEED_MAX = 3.0

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "ollama": "llava",
}

DEFAULT_BASE_URLS: dict[str, str] = {
    "anthropic": "https://api.anthropic.com",
    "openai": "https://api.openai.com",
    "ollama": "http://localhost:11434",
}

DEFAULT_KEY_ENVS: dict[str, str | None] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "ollama": None,
}


class ProviderConfig(BaseModel):
    """Model backend selection.

    Attributes:
        kind: Backend implementation (anthropic, openai, ollama)
        model: Model name; None picks the backend default
        base_url: Endpoint root; None picks the backend default
        api_key: Inline key; takes precedence over api_key_env
        api_key_env: Environment variable holding the key
        structured_calls: Ask for tool invocations when the backend supports them
        max_tokens: Response token cap
        connect_timeout: Seconds to establish a connection
        response_timeout: Seconds to wait for a complete response
    """

    kind: ProviderKind = "anthropic"
    model: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    api_key_env: str | None = None
    structured_calls: bool = True
    max_tokens: int = Field(default=1024, gt=0)
    connect_timeout: float = Field(default=30.0, gt=0)
    response_timeout: float = Field(default=300.0, gt=0)

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.kind]

    @property
    def resolved_base_url(self) -> str:
        return (self.base_url or DEFAULT_BASE_URLS[self.kind]).rstrip("/")

    def resolve_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        env = self.api_key_env or DEFAULT_KEY_ENVS[self.kind]
        return os.environ.get(env) if env else None


class AgentConfig(BaseModel):
    """Run-loop behaviour.

    Attributes:
        max_iterations: Hard cap on loop iterations per instruction
        max_consecutive_errors: Errors in a row before the run fails
        confirm_dangerous: Gate destructive key combinations behind confirmation
        confirmation_timeout_ms: Confirmation wait before resolving to deny
        max_retries: Re-executions when an action leaves the screen unchanged
        retry_delay_ms: Pause before each re-execution
        enable_self_correction: Verify screen effects and retry
        speed_multiplier: Scales every built-in delay (0.25 to 3.0)
        max_history: Conversation length cap
        keep_images: Recent user turns that keep their screenshot
        preview_mode: Decide actions without executing them
        task_tips: Add task-type hints to the first turn
    """

    max_iterations: int = Field(default=150, gt=0)
    max_consecutive_errors: int = Field(default=3, gt=0)
    confirm_dangerous: bool = True
    confirmation_timeout_ms: int = Field(default=30_000, ge=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    enable_self_correction: bool = True
    speed_multiplier: float = 1.0
    max_history: int = Field(default=20, ge=2)
    keep_images: int = Field(default=3, ge=1)
    preview_mode: bool = False
    task_tips: bool = True

    @field_validator("speed_multiplier")
    @classmethod
    def _clamp_speed(cls, value: float) -> float:
        return min(max(value, SPEED_MIN), SPEED_MAX)


class QueueConfig(BaseModel):
    """Instruction queue behaviour."""

    failure_mode: Literal["stop", "continue"] = "stop"
    delay_ms: int = Field(default=500, ge=0)

    @field_validator("failure_mode", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class HistoryConfig(BaseModel):
    enabled: bool = True
    max_instructions: int = Field(default=50, gt=0)
    directory: str | None = None


class PilotConfig(BaseModel):
    """Everything a run needs."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)


def load_config(overrides: dict[str, Any] | None = None) -> PilotConfig:
    """Validate the merged settings (plus ``overrides``) into a PilotConfig.

    Raises:
        ConfigError: If any value fails validation
    """
    settings = get_settings()
    data = {
        section: settings.get_section(section)
        for section in ("provider", "agent", "queue", "history")
    }
    for section, values in (overrides or {}).items():
        data.setdefault(section, {}).update(values)

    try:
        return PilotConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


__all__ = [
    "AgentConfig",
    "DEFAULT_MODELS",
    "HistoryConfig",
    "PilotConfig",
    "ProviderConfig",
    "ProviderKind",
    "QueueConfig",
    "load_config",
]
