"""Loguru sink configuration."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"


def configure_logging(level: str = "INFO", log_file: Path | str | None = None) -> None:
    """Replace loguru's default sink with a compact stderr sink (+ optional file).

    Args:
        level: Minimum level for both sinks.
        log_file: Optional path to a rotating log file.
    """
    logger.remove()
    logger.add(sys.stderr, format=_CONSOLE_FORMAT, level=level.upper())
    if log_file:
        logger.add(
            Path(log_file),
            format=_FILE_FORMAT,
            level=level.upper(),
            rotation="10 MB",
            retention="30 days",
        )
