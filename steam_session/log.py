"""
Logging helpers.

The package only ever calls ``logging.getLogger(__name__)``; applications that
want the structured JSON-line output call :func:`setup_logging` once.
"""

import logging
import sys
from typing import Optional


LOG_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}'
)


def setup_logging(log_level: str = "INFO", stream=None) -> logging.Logger:
    """
    Configure structured logging for the ``steam_session`` logger tree.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream (defaults to stdout)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger("steam_session")
    logger.setLevel(getattr(logging, log_level.upper()))

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    # Replace handlers from a previous call instead of stacking them
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)

    return logger


def mask_secret(value: Optional[str], visible: int = 6) -> str:
    """
    Shorten a token for log output.

    Args:
        value: Token or other secret
        visible: Number of leading characters to keep

    Returns:
        ``abcdef...(123 chars)`` style string, or ``<none>``
    """
    if not value:
        return "<none>"
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}...({len(value)} chars)"
