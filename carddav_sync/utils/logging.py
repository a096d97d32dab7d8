"""
Logging setup for carddav_sync.

All package modules log through `logging.getLogger(__name__)`; this module
attaches the handlers to the package logger:
- a stderr console handler, colored on capable terminals
- a daily file handler in the configuration directory, always at DEBUG

Both handlers scrub Basic credentials from messages so an Authorization
header echoed by a server never reaches a log file.
"""

import logging
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from carddav_sync.utils.paths import resolve_config_dir

LOGGER_NAME = "carddav_sync"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ENV_LOG_LEVEL = "CARDDAV_SYNC_LOG_LEVEL"
ENV_DEBUG = "CARDDAV_SYNC_DEBUG"
ENV_LOG_FILE = "CARDDAV_SYNC_LOG_FILE"

LOG_FILE_PREFIX = "carddav_sync_"

# Values of CARDDAV_SYNC_LOG_FILE that turn file logging off
DISABLED_LOG_FILE_VALUES = ("none", "disabled", "off")

BASIC_TOKEN_RE = re.compile(r"(Basic\s+)[A-Za-z0-9+/=]+")


class CredentialRedactingFilter(logging.Filter):
    """Replace Basic auth tokens in log messages with a placeholder."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "Basic" in message:
            record.msg = BASIC_TOKEN_RE.sub(r"\1<redacted>", message)
            record.args = None
        return True


class ColoredFormatter(logging.Formatter):
    """
    Formatter that colors the level name on terminals.

    Honours NO_COLOR (https://no-color.org/) and TERM=dumb.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and stderr_supports_color()

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno) if self.use_colors else None
        if color is None:
            return super().format(record)

        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def stderr_supports_color() -> bool:
    if os.environ.get("NO_COLOR") or os.environ.get("TERM") == "dumb":
        return False
    isatty = getattr(sys.stderr, "isatty", None)
    return bool(isatty and isatty())


def get_log_level_from_env() -> int:
    """
    Read the log level from the environment.

    CARDDAV_SYNC_DEBUG=1/true/yes wins over CARDDAV_SYNC_LOG_LEVEL; unknown
    level names fall back to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").strip().lower() in ("1", "true", "yes"):
        return logging.DEBUG

    name = os.environ.get(ENV_LOG_LEVEL, "").strip().upper()
    level = logging.getLevelName(name) if name else logging.INFO
    return level if isinstance(level, int) else logging.INFO


def default_log_dir() -> Path:
    return resolve_config_dir() / "logs"


def daily_log_name(day: Optional[datetime] = None) -> str:
    return f"{LOG_FILE_PREFIX}{(day or datetime.now()):%Y%m%d}.log"


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Decide where file logging goes.

    Returns:
        The CARDDAV_SYNC_LOG_FILE path if set, None if that variable disables
        file logging, otherwise today's file inside log_dir
    """
    override = os.environ.get(ENV_LOG_FILE)
    if override is not None:
        if override.strip().lower() in DISABLED_LOG_FILE_VALUES + ("",):
            return None
        return Path(override)
    return (log_dir or default_log_dir()) / daily_log_name()


def _console_handler(level: int, verbose: bool, use_colors: bool) -> logging.Handler:
    fmt = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        ColoredFormatter(fmt, DATE_FORMAT)
        if use_colors
        else logging.Formatter(fmt, DATE_FORMAT)
    )
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the carddav_sync package logger.

    Calling it again replaces the handlers from the previous call.

    Args:
        level: Console level; read from the environment when None
        verbose: Log at DEBUG with source locations on the console
        log_dir: Directory for the daily log file
        log_file: Explicit log file, takes precedence over log_dir
        enable_file_logging: Set False for console-only logging
        use_colors: Color the console level names when supported

    Returns:
        The package logger
    """
    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.setLevel(level)
    logger.propagate = False

    redactor = CredentialRedactingFilter()
    console = _console_handler(level, verbose, use_colors)
    console.addFilter(redactor)
    logger.addHandler(console)

    file_path = (log_file or get_log_file_path(log_dir)) if enable_file_logging else None
    if file_path is not None:
        try:
            handler = _file_handler(file_path)
        except OSError as e:
            logger.warning(f"File logging disabled, cannot open {file_path}: {e}")
        else:
            handler.addFilter(redactor)
            logger.addHandler(handler)
            logger.debug(f"Writing log file {file_path}")

    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Delete all but the keep_count newest daily log files.

    A keep_count of 0 or less keeps everything.

    Returns:
        Number of files deleted
    """
    directory = log_dir or default_log_dir()
    if keep_count <= 0 or not directory.is_dir():
        return 0

    newest_first = sorted(
        directory.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    deleted = 0
    for stale in newest_first[keep_count:]:
        try:
            stale.unlink()
        except FileNotFoundError:
            continue
        deleted += 1
    return deleted


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the carddav_sync hierarchy."""
    if name != LOGGER_NAME and not name.startswith(f"{LOGGER_NAME}."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_log_level(level: int) -> None:
    """Change the console level at runtime; the file handler stays at DEBUG."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


def disable_logging() -> None:
    logging.getLogger(LOGGER_NAME).disabled = True


def enable_logging() -> None:
    logging.getLogger(LOGGER_NAME).disabled = False


def mask_identity(identity: Optional[str]) -> str:
    """
    Mask an email identity for log output.

    Example:
        >>> mask_identity("jane.doe@example.com")
        'j***@example.com'
    """
    if not identity:
        return "<none>"
    local, sep, domain = identity.partition("@")
    if not sep:
        return f"{identity[:1]}***"
    return f"{local[:1]}***@{domain}"


__all__ = [
    "LOGGER_NAME",
    "ColoredFormatter",
    "CredentialRedactingFilter",
    "cleanup_old_logs",
    "disable_logging",
    "enable_logging",
    "get_log_file_path",
    "get_log_level_from_env",
    "get_logger",
    "mask_identity",
    "set_log_level",
    "setup_logging",
]
