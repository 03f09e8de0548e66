"""
providers - Model backends behind one capability interface

Usage:
    from omni_pilot.providers import create_provider
    provider = create_provider(config.provider)
    response = await provider.send(conversation.messages, schema, on_chunk=print)
"""

from __future__ import annotations

from omni_pilot.config.models import ProviderConfig
from omni_pilot.core.errors import ConfigError

from .base import (
    ActionSchema,
    PlainText,
    Provider,
    ProviderResponse,
    ToolInvocation,
    Usage,
)


def create_provider(config: ProviderConfig) -> Provider:
    """Build the backend selected by ``config.kind``."""
    if config.kind == "anthropic":
        from .anthropic import AnthropicProvider

        return AnthropicProvider(config)
    if config.kind == "openai":
        from .openai_compatible import OpenAICompatibleProvider

        return OpenAICompatibleProvider(config)
    if config.kind == "ollama":
        from .ollama import OllamaProvider

        return OllamaProvider(config)
    raise ConfigError(f"Unknown provider kind: {config.kind}")


__all__ = [
    "ActionSchema",
    "PlainText",
    "Provider",
    "ProviderResponse",
    "ToolInvocation",
    "Usage",
    "create_provider",
]
