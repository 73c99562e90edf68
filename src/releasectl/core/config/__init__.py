"""Configuration management with Pydantic validation."""

from releasectl.core.config.models import (
    DEFAULT_CONFIG_PATH,
    ReleasectlConfig,
    StorageConfig,
    load_config,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ReleasectlConfig",
    "StorageConfig",
    "load_config",
]
