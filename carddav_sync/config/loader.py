"""
Configuration loader module for CardDAV synchronization.

Reads `config.yaml` from the configuration directory, checks the known keys
against CONFIG_SCHEMA and turns the result into the EngineSettings consumed
by ContactSyncEngine. A missing file simply means "use the defaults".

Example config.yaml:

    server_url: https://dav.example.com
    discovery_url: https://dav.example.com/.well-known/carddav
    identity: user@example.com
    request_timeout: 20
    duplicate_threshold: 3
    log_retention_count: 10
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NamedTuple, Optional

import yaml

from carddav_sync.api.discovery import DEFAULT_DISCOVERY_URL, DEFAULT_SERVER_URL
from carddav_sync.api.transport import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from carddav_sync.sync.duplicates import DEFAULT_DUPLICATE_THRESHOLD
from carddav_sync.sync.repository import DEFAULT_MAX_FALLBACK_FETCHES
from carddav_sync.utils.paths import resolve_config_dir

DEFAULT_CONFIG_FILE = "config.yaml"

DEFAULT_LOG_RETENTION_COUNT = 10

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


class KeyRule(NamedTuple):
    """Expected type and optional range check for one configuration key."""

    types: tuple[type, ...]
    check: Optional[Callable[[Any], bool]] = None
    requirement: str = ""


def _is_http_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


CONFIG_SCHEMA: dict[str, KeyRule] = {
    # Server
    "server_url": KeyRule((str,), _is_http_url, "must be an http(s) URL"),
    "discovery_url": KeyRule((str,), _is_http_url, "must be an http(s) URL"),
    "identity": KeyRule((str,)),
    "user_agent": KeyRule((str,)),
    "verify_ssl": KeyRule((bool,)),
    # Requests
    "request_timeout": KeyRule((int, float), lambda v: v > 0, "must be > 0"),
    "max_fallback_fetches": KeyRule((int,), lambda v: v >= 1, "must be >= 1"),
    # Duplicate detection
    "duplicate_threshold": KeyRule((int,), lambda v: v >= 1, "must be >= 1"),
    # CLI and logging
    "verbose": KeyRule((bool,)),
    "debug": KeyRule((bool,)),
    "log_dir": KeyRule((str,)),
    "log_retention_count": KeyRule((int,), lambda v: v >= 0, "must be >= 0"),
}


@dataclass
class EngineSettings:
    """
    Settings for one ContactSyncEngine.

    Attributes:
        server_url: Base URL for constructed principal/home/collection URLs
        discovery_url: Well-known URL queried first during discovery
        request_timeout: Per-request deadline in seconds
        max_fallback_fetches: Cap on individual GETs when REPORT fails
        duplicate_threshold: Minimum pair score to link duplicates
        user_agent: User-Agent header sent with every request
        verify_ssl: Whether TLS certificates are verified
        identity: Default account email for CLI commands
    """

    server_url: str = DEFAULT_SERVER_URL
    discovery_url: str = DEFAULT_DISCOVERY_URL
    request_timeout: float = DEFAULT_TIMEOUT
    max_fallback_fetches: int = DEFAULT_MAX_FALLBACK_FETCHES
    duplicate_threshold: int = DEFAULT_DUPLICATE_THRESHOLD
    user_agent: str = DEFAULT_USER_AGENT
    verify_ssl: bool = True
    identity: Optional[str] = None

    @classmethod
    def from_dict(cls, config: Optional[dict[str, Any]]) -> "EngineSettings":
        """
        Create EngineSettings from a validated configuration dictionary.

        Keys that are not engine settings (logging, CLI) are ignored.
        """
        known = {
            key: value
            for key, value in (config or {}).items()
            if key in cls.__dataclass_fields__
        }
        if "request_timeout" in known:
            known["request_timeout"] = float(known["request_timeout"])
        return cls(**known)


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        settings = EngineSettings.from_dict(loader.load_and_validate())

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Optional[Path] = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.carddav-sync/ or $CARDDAV_SYNC_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """Load config_path; see load_from_file."""
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Returns:
            Configuration dictionary; empty when the file is missing or empty

        Raises:
            ConfigError: If the file cannot be read or is not a YAML mapping
        """
        path = Path(path)
        if not path.is_file():
            logger.debug(f"No configuration file at {path}, using defaults")
            return {}

        try:
            config = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded {len(config)} configuration keys from {path}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """
        Check known keys against CONFIG_SCHEMA.

        Unknown keys are logged and ignored.

        Raises:
            ConfigError: On the first key with a wrong type or out-of-range value
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            rule = CONFIG_SCHEMA.get(key)
            if rule is None:
                logger.debug(f"Ignoring unknown configuration key '{key}'")
                continue

            # YAML booleans are ints to Python; only accept them for bool keys
            wrong_type = not isinstance(value, rule.types) or (
                isinstance(value, bool) and bool not in rule.types
            )
            if wrong_type:
                expected = " or ".join(t.__name__ for t in rule.types)
                raise ConfigError(
                    f"Invalid type for '{key}': expected {expected}, "
                    f"got {type(value).__name__}"
                )

            if rule.check is not None and not rule.check(value):
                raise ConfigError(f"{key} {rule.requirement}, got {value!r}")

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config
