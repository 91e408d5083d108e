"""
Logging configuration for hubsync.

Console output through rich, plus an optional file log. Every handler set up
here masks credentials, since request URLs, token responses and pairing codes
all pass through debug logging.
"""

import logging
import re
import sys
import traceback
from pathlib import Path
from typing import Any

from rich.logging import RichHandler

_SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"(HUBSYNC-CLOUD-)[A-Za-z0-9+/=]+"),
    re.compile(r"""((?:access_token|refresh_token|code_verifier|password|api_key)["']?\s*[:=]\s*["']?)[^\s"'&,}]+"""),
)


def redact(text: str) -> str:
    """Mask bearer tokens, pairing codes and credential fields in ``text``."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1***", text)
    return text


class SecretFilter(logging.Filter):
    """Rewrites each record's message through redact() before it is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class FileFormatter(logging.Formatter):
    """Formatter for file logs - clean and parseable."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with full exception info for errors."""
        result = super().format(record)
        if record.exc_info and not record.exc_text:
            result += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return result


class ConsoleFormatter(logging.Formatter):
    """Plain console format: "level: timestamp - msg", with file:line for errors."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        base = f"{record.levelname}: {self.formatTime(record)} - {record.getMessage()}"
        if record.levelno >= logging.ERROR and record.pathname:
            base = f"{record.levelname}: {self.formatTime(record)} - {Path(record.pathname).name}:{record.lineno} - {record.getMessage()}"
        return base


LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_level(level: str | int) -> int:
    """
    Parse logging level from string or int.

    Unknown names fall back to INFO.
    """
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        return LEVEL_MAP.get(level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    format_string: str | None = None,
    file_mode: str = "a",
    console_enabled: bool = True,
    use_rich: bool = True,
) -> logging.Logger:
    """
    Setup logging for hubsync.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int (default: INFO)
        log_file: Optional file path to write logs to (default: None, console only)
        format_string: Optional custom console format string
        file_mode: 'a' to append, 'w' to overwrite (default: 'a')
        console_enabled: Whether to log to the console (default: True)
        use_rich: Use rich's RichHandler for console output (default: True)

    Returns:
        The configured "hubsync" logger
    """
    logger = logging.getLogger("hubsync")
    # Only clear handlers from this logger, never the root or child loggers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level_int = _parse_level(level)
    logger.setLevel(level_int)

    if console_enabled:
        if use_rich and format_string is None:
            logger.addHandler(
                RichHandler(
                    level=level_int,
                    show_time=True,
                    show_path=False,
                    markup=False,
                    rich_tracebacks=True,
                    log_time_format="[%X]",
                )
            )
        else:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(level_int)
            console_handler.setFormatter(logging.Formatter(format_string) if format_string else ConsoleFormatter())
            logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode=file_mode)
        # File captures everything the logger lets through
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(FileFormatter())
        logger.addHandler(file_handler)

    for handler in logger.handlers:
        handler.addFilter(SecretFilter())

    logger.propagate = True
    return logger


def setup_logging_from_config(config: dict[str, Any], project_dir: Path | None = None) -> logging.Logger:
    """
    Setup logging from the ``logging:`` section of a hubsync config.

    Args:
        config: Full configuration dictionary
        project_dir: Directory used to resolve a relative log file path

    Returns:
        The configured "hubsync" logger
    """
    logging_config = config.get("logging") or {}

    level = logging_config.get("level", logging.INFO)
    file_mode = logging_config.get("file_mode", "a")
    format_string = logging_config.get("format")

    log_file = None
    if logging_config.get("file_enabled", True):
        log_file = logging_config.get("file") or logging_config.get("log_file")
    if log_file and project_dir:
        log_file = Path(log_file)
        if not log_file.is_absolute():
            log_file = project_dir / log_file

    console_enabled = logging_config.get("console_enabled", True)
    console_type = logging_config.get("console_type", "rich")

    return setup_logging(
        level=level,
        log_file=log_file,
        format_string=format_string,
        file_mode=file_mode,
        console_enabled=console_enabled,
        use_rich=console_type == "rich",
    )


def get_logger(name: str = "hubsync") -> logging.Logger:
    """
    Get a logger under the hubsync namespace.

    Library code never configures handlers on its own; until setup_logging()
    runs, records go through the standard lastResort handler (WARNING and up).

    Args:
        name: Logger name (default: "hubsync")

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)
    logger.propagate = True
    return logger
