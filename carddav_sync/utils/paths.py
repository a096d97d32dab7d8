"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the carddav-sync configuration
directory across the config loader, credential store and CLI.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".carddav-sync"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "CARDDAV_SYNC_CONFIG_DIR"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. CARDDAV_SYNC_CONFIG_DIR environment variable
        3. Default directory (~/.carddav-sync)

    Args:
        config_dir: Optional explicit configuration directory path.
                   Can be a Path object or string.

    Returns:
        Resolved Path to the configuration directory (expanduser and resolve applied)
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def config_path(file_name: str, config_dir: Path | str | None = None) -> Path:
    """
    Build the path of a file inside the configuration directory.

    Args:
        file_name: File name such as "config.yaml" or "credentials.json"
        config_dir: Optional explicit configuration directory

    Returns:
        Path to the file (the file itself may not exist yet)
    """
    return resolve_config_dir(config_dir) / file_name


def ensure_private_dir(path: Path) -> Path:
    """
    Create a directory readable only by the current user if it is missing.

    Returns:
        The directory path
    """
    if not path.exists():
        path.mkdir(parents=True, mode=0o700)
    return path
