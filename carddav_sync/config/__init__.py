"""
carddav_sync.config - Configuration management module

Contains YAML configuration loading, validation, and engine settings.
"""

from carddav_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    ConfigLoader,
    EngineSettings,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ConfigError",
    "ConfigLoader",
    "EngineSettings",
]
