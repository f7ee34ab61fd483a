"""
Logging configuration module for outreach_sync.

Provides centralized logging configuration with support for:
- Console and file logging
- Configurable log levels via environment variables
- Verbose mode for detailed output
- Colored output for better readability (when supported)

The scheduler runs sync passes on worker threads, so every format
includes the thread name when verbose output is requested.
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from outreach_sync.utils.paths import resolve_config_dir

# Root logger name for the package
ROOT_LOGGER_NAME = "outreach_sync"

# Default log format
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Simplified format for console (less verbose)
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

# Verbose format (includes thread and source location)
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] "
    "[%(filename)s:%(lineno)d] - %(message)s"
)

# Date format for log timestamps
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log file name prefix; files are rotated daily by name
LOG_FILE_PREFIX = "outreach_sync_"

# Environment variable names
ENV_LOG_LEVEL = "OUTREACH_SYNC_LOG_LEVEL"
ENV_DEBUG = "OUTREACH_SYNC_DEBUG"
ENV_LOG_FILE = "OUTREACH_SYNC_LOG_FILE"

# Module-level variable to store configured log directory
_configured_log_dir: Optional[Path] = None


def default_log_dir() -> Path:
    """Logs live under the configuration directory by default."""
    return resolve_config_dir() / "logs"


def _dated_log_name() -> str:
    return f"{LOG_FILE_PREFIX}{datetime.now().strftime('%Y%m%d')}.log"


class ColoredFormatter(logging.Formatter):
    """
    A logging formatter that adds ANSI color codes to log messages.

    Colors are only applied when output is to a terminal that supports them.
    """

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color()

    def _supports_color(self) -> bool:
        """Check if the terminal supports colors."""
        if not hasattr(sys.stderr, "isatty") or not sys.stderr.isatty():
            return False

        # https://no-color.org/
        if os.environ.get("NO_COLOR"):
            return False

        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with optional colors."""
        # Copy so other handlers see the uncolored record
        record = logging.makeLogRecord(record.__dict__)

        if self.use_colors and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            record.levelname = f"{color}{record.levelname}{self.RESET}"
            record.msg = f"{color}{record.msg}{self.RESET}"

        return super().format(record)


def get_log_level_from_env() -> int:
    """
    Get the logging level from environment variables.

    OUTREACH_SYNC_DEBUG wins over OUTREACH_SYNC_LOG_LEVEL. Unknown level
    names fall back to INFO.

    Returns:
        Logging level constant (e.g., logging.DEBUG, logging.INFO)
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG

    level_str = os.environ.get(ENV_LOG_LEVEL, "INFO").upper()

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    return level_map.get(level_str, logging.INFO)


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Get the log file path from environment or default location.

    Returns:
        Path to log file, or None if file logging is disabled
    """
    log_file = os.environ.get(ENV_LOG_FILE)
    if log_file is not None:
        if log_file.lower() in ("none", "disabled", ""):
            return None
        return Path(log_file)

    return (log_dir or default_log_dir()) / _dated_log_name()


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure logging for the outreach_sync application.

    Sets up a console handler (stderr) and, unless disabled, a file handler
    that always captures DEBUG records.

    Args:
        level: Logging level. If None, determined from environment variables.
        verbose: If True, use the verbose format and DEBUG level.
        log_dir: Directory for log files. Overrides the default location.
        log_file: Explicit log file path. Wins over log_dir.
        enable_file_logging: If False, disable file logging entirely.
        use_colors: If True, use colored console output (when supported).

    Returns:
        The root logger for outreach_sync

    Example:
        setup_logging(verbose=True)
        setup_logging(log_dir=Path("/var/log/outreach-sync"))
        setup_logging(enable_file_logging=False)
    """
    global _configured_log_dir

    if level is None:
        level = get_log_level_from_env()
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    # Avoid duplicate records through the root logger
    logger.propagate = False

    console_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    console_formatter: logging.Formatter
    if use_colors:
        console_formatter = ColoredFormatter(console_format, DATE_FORMAT)
    else:
        console_formatter = logging.Formatter(console_format, DATE_FORMAT)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    _configured_log_dir = log_dir or (log_file.parent if log_file else None)

    if not enable_file_logging:
        return logger

    if log_file:
        file_path: Optional[Path] = log_file
    elif log_dir:
        file_path = log_dir / _dated_log_name()
    else:
        file_path = get_log_file_path()

    if file_path:
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(file_path, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
            logger.addHandler(file_handler)
            logger.debug(f"Log file: {file_path}")
        except OSError as e:
            # File logging is best effort; console output still works
            logger.warning(f"Could not create log file {file_path}: {e}")

    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Remove old log files, keeping only the most recent ones.

    Args:
        log_dir: Directory containing log files. Defaults to the directory
                 configured by setup_logging(), then the default location.
        keep_count: Number of log files to keep. 0 disables cleanup.

    Returns:
        Number of files deleted.
    """
    if keep_count <= 0:
        return 0

    logs_dir = log_dir or _configured_log_dir or default_log_dir()
    if not logs_dir.exists():
        return 0

    logs = sorted(
        logs_dir.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )

    deleted_count = 0
    for old_log in logs[keep_count:]:
        try:
            old_log.unlink()
            deleted_count += 1
        except OSError as e:
            logging.getLogger(ROOT_LOGGER_NAME).debug(
                f"Could not delete old log {old_log}: {e}"
            )

    return deleted_count


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger inside the outreach_sync hierarchy.

    Args:
        name: Name of the module (typically __name__)

    Returns:
        Logger instance for the module
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)


def set_log_level(level: int) -> None:
    """
    Change the logging level at runtime.

    File handlers stay at DEBUG so the log file remains complete.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


def disable_logging() -> None:
    """Disable all outreach_sync logging output."""
    logging.getLogger(ROOT_LOGGER_NAME).disabled = True


def enable_logging() -> None:
    """Re-enable logging output after it was disabled."""
    logging.getLogger(ROOT_LOGGER_NAME).disabled = False


# Module-level exports
__all__ = [
    "setup_logging",
    "get_logger",
    "set_log_level",
    "disable_logging",
    "enable_logging",
    "cleanup_old_logs",
    "default_log_dir",
    "ColoredFormatter",
    "get_log_level_from_env",
    "get_log_file_path",
    "ROOT_LOGGER_NAME",
    "DEFAULT_FORMAT",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
    "LOG_FILE_PREFIX",
]
