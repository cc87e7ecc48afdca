"""
log.py - Logging setup

Library modules only obtain loggers; the CLI (or an embedding application)
calls configure_logging() once.
"""

import logging
import sys

LOG_FORMAT = '[%(name)s] %(levelname)s: %(message)s'


def configure_logging(level="INFO", stream=None):
    """
    Configure the root ``lnsim`` logger.

    Args:
        level: Level name or number (e.g. "DEBUG")
        stream: Output stream (default: stderr)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger('lnsim')
    logger.setLevel(level)

    # Replace handlers so repeated calls don't duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(component: str) -> logging.Logger:
    """Return the logger for an lnsim component (e.g. "orchestrator")."""
    return logging.getLogger(f'lnsim.{component}')
