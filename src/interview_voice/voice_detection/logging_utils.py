"""Logging utilities with custom trace level."""

import logging
from typing import Any

# Define custom TRACE level (lower than DEBUG)
TRACE_LEVEL = 5

VERBOSE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def add_trace_level() -> None:
    """Add a custom TRACE logging level."""
    logging.addLevelName(TRACE_LEVEL, "TRACE")

    def trace(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
        """Log a message with severity 'TRACE'."""
        if self.isEnabledFor(TRACE_LEVEL):
            self._log(TRACE_LEVEL, message, args, **kwargs)

    logging.Logger.trace = trace


def get_logger(name: str) -> logging.Logger:
    """Get a logger with trace support."""
    if not hasattr(logging.Logger, "trace"):
        add_trace_level()

    return logging.getLogger(name)


def configure_logging(verbose: bool = False, trace: bool = False) -> int:
    """
    Configure root logging for command-line use.

    Args:
        verbose: Enable DEBUG output with logger names
        trace: Enable TRACE output (per-tick level readings)

    Returns:
        The level that was configured
    """
    add_trace_level()

    if trace:
        level = TRACE_LEVEL
        logging.basicConfig(level=level, format=VERBOSE_FORMAT)
    elif verbose:
        level = logging.DEBUG
        logging.basicConfig(level=level, format=VERBOSE_FORMAT)
    else:
        level = logging.INFO
        logging.basicConfig(level=level, format=DEFAULT_FORMAT)

    return level
