"""AI configuration assistant."""

from hugohost.assistant.config_generator import (
    ConfigGenerationError,
    HugoConfigGenerator,
    HugoConfigRequest,
)

__all__ = [
    "ConfigGenerationError",
    "HugoConfigGenerator",
    "HugoConfigRequest",
]
