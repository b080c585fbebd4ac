"""Loguru sink configuration."""

import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Replace default sinks with a coloured stderr sink and an optional rotating file.

    Args:
        level: Minimum level for the stderr sink
        log_file: Path of a DEBUG-level log file, rotated at 500 MB
    """
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)
    if log_file:
        logger.add(
            log_file,
            rotation="500 MB",
            retention="7 days",
            level="DEBUG"
        )
