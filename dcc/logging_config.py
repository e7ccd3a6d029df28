#!/usr/bin/env python3
"""
Logging configuration for dcc.
"""

import sys
from typing import Optional

from loguru import logger


def setup_logging(log_level: str = "WARNING", log_file: Optional[str] = None) -> None:
    """
    Set up logging configuration using loguru.

    Args:
        log_level: The logging level (TRACE, DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file receiving a copy of every message
    """
    logger.remove()

    if log_level in ("TRACE", "DEBUG"):
        fmt = (
            "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )
    else:
        fmt = "<level>dcc: {message}</level>"

    logger.add(sys.stderr, format=fmt, level=log_level, colorize=None)

    if log_file:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="1 week",
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )

    logger.debug(f"Logging initialized at {log_level}")
