"""
Logging utilities for consistent logging across the engine.

Every module asks for its logger through :func:`get_logger`, which attaches
a stdout handler on first use. Handlers are never stacked, so a module
imported again (for example inside a worker process) keeps a single handler.
"""

import logging
import sys
from typing import Optional
from src.config import Config


def _resolve_level(level: Optional[str]) -> int:
    name = (level or Config.LOG_LEVEL).upper()
    return getattr(logging, name, logging.INFO)


def setup_logger(
    name: str,
    level: Optional[str] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (typically __name__)
        level: Logging level (defaults to Config.LOG_LEVEL)
        format_string: Custom format string (defaults to Config.LOG_FORMAT)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    numeric_level = _resolve_level(level)
    logger.setLevel(numeric_level)

    # Avoid adding handlers multiple times
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(numeric_level)
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(format_string or Config.LOG_FORMAT))
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance (creates one if it doesn't exist).

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        return setup_logger(name)

    return logger
