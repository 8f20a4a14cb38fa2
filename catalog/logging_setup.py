"""Loguru configuration shared by the API, the worker and the CLI."""

import os
import sys

from loguru import logger

from catalog.config import Settings, get_settings

CONSOLE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}\n{exception}"


def setup_logging(settings: Settings | None = None) -> None:
    """Configure loguru logging for the application."""
    settings = settings or get_settings()

    # Remove default handler
    logger.remove()

    log_level = settings.log_level
    log_file = settings.log_file
    log_error_file = settings.log_error_file

    # Ensure logs directory exists
    for path in (log_file, log_error_file):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    # Console handler with colorization
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=log_level,
        colorize=True,
    )

    # File handler with rotation
    logger.add(
        log_file,
        format=FILE_FORMAT,
        level=log_level,
        rotation=settings.log_rotation,
        retention=settings.log_retention_days,
        compression="zip",
    )

    # Separate error log file (ERROR and above)
    logger.add(
        log_error_file,
        format=FILE_FORMAT,
        level="ERROR",
        rotation=settings.log_rotation,
        retention=settings.log_retention_days,
        compression="zip",
    )

    logger.info(f"Logging configured: level={log_level}, log_file={log_file}")
