"""Logging setup and configuration."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from synapse_core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
    "azure.identity.aio",
    "urllib3",
    "aiohttp",
    "asyncio",
]


def _coerce_level(level: int | str) -> int:
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        return resolved if isinstance(resolved, int) else DEFAULT_CONSOLE_LEVEL
    return level


def setup_logging(
    name: str = "synapse_workspace",
    json_format: bool = False,
    console_level: int | str = DEFAULT_CONSOLE_LEVEL,
    log_file: Path | None = None,
    file_level: int | str = DEFAULT_FILE_LEVEL,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    stream=None,
) -> logging.Logger:
    """
    Configure root logging with a console handler and an optional rotating file.

    Console output goes to stderr: stdout is reserved for the agent transport,
    which exchanges protocol messages over it.

    Args:
        name: Logger name to return
        json_format: Use JSONFormatter on the console instead of ConsoleFormatter
        console_level: Console handler level (default: INFO)
        log_file: Optional path for a size-rotated JSON log file
        file_level: File handler level (default: DEBUG)
        max_bytes: Rotation size for the file handler
        backup_count: Number of rotated files to keep
        suppress_noisy: Quiet down Azure SDK and HTTP client loggers
        stream: Console stream override (default: sys.stderr)

    Returns:
        Configured logger instance
    """
    stream = stream or sys.stderr

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream)
    console_handler.setLevel(_coerce_level(console_level))
    console_handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter(stream=stream))
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(_coerce_level(file_level))
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"config_path": str(log_file) if log_file else None},
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() to ensure consistent naming.
    """
    return logging.getLogger(name)
