"""
Logging configuration for the performance engine.

Uses loguru for structured, async-friendly logging.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def setup_logger(
    level: str = "INFO",
    log_file: Optional[str] = None,
    rotation: str = "1 day",
    retention: str = "30 days",
    format_string: Optional[str] = None,
) -> None:
    """
    Configure the logger for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Path to log file (None for console only)
        rotation: When to rotate log files
        retention: How long to keep old log files
        format_string: Custom format string
    """
    # Remove default handler
    logger.remove()

    if format_string is None:
        format_string = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

    logger.add(
        sys.stdout,
        format=format_string,
        level=level,
        colorize=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        plain_format = format_string
        for tag in ("green", "level", "cyan"):
            plain_format = plain_format.replace(f"<{tag}>", "").replace(f"</{tag}>", "")

        logger.add(
            log_file,
            format=plain_format,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="gz",
        )

    logger.info(f"Logger initialized with level={level}")

