"""
carddav_sync.utils - Utility module

Common utilities including logging configuration and path resolution.
"""

from carddav_sync.utils.paths import (
    DEFAULT_CONFIG_DIR,
    config_path,
    ensure_private_dir,
    resolve_config_dir,
)

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "config_path",
    "ensure_private_dir",
    "resolve_config_dir",
]
