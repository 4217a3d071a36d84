"""Configuration loading and validation."""

from .models import (
    SystemConfig,
    HostConfig,
    ExportConfig,
    DEFAULT_MAX_CONCURRENT_EXPORTS,
)
from .loader import ConfigLoader, ConfigLoadError, ConfigValidationError

__all__ = [
    "SystemConfig",
    "HostConfig",
    "ExportConfig",
    "DEFAULT_MAX_CONCURRENT_EXPORTS",
    "ConfigLoader",
    "ConfigLoadError",
    "ConfigValidationError",
]
