"""Configuration: layered YAML settings, typed models, and logging."""

from .logging import configure_logging, get_logger
from .models import AgentConfig, PilotConfig, ProviderConfig, QueueConfig, load_config
from .settings import get_setting, get_settings

__all__ = [
    "AgentConfig",
    "PilotConfig",
    "ProviderConfig",
    "QueueConfig",
    "configure_logging",
    "get_logger",
    "get_setting",
    "get_settings",
    "load_config",
]
