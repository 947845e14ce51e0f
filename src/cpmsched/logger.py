"""Logging configuration for cpmsched with custom verbosity levels."""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

# Custom levels between the standard ones
CHANGES_LEVEL = 25  # Between INFO (20) and WARNING (30) - verbosity level 1
CHECKS_LEVEL = 15  # Between DEBUG (10) and INFO (20) - verbosity level 2

logging.addLevelName(CHANGES_LEVEL, "CHANGES")
logging.addLevelName(CHECKS_LEVEL, "CHECKS")

VERBOSITY_SILENT = 0  # Only errors
VERBOSITY_CHANGES = 1  # Leveling delays, applied schedules, resolutions
VERBOSITY_CHECKS = 2  # Every constraint check
VERBOSITY_DEBUG = 3  # Full pass-by-pass detail


class SchedLogger(logging.Logger):
    """Logger with semantic verbosity methods.

    - changes(): verbosity level 1 - schedule mutations and resolutions
    - checks(): verbosity level 2 - individual constraint and conflict checks
    - debug(): verbosity level 3 - algorithm internals
    """

    def changes(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log changes (verbosity level 1)."""
        if self.isEnabledFor(CHANGES_LEVEL):
            self._log(CHANGES_LEVEL, msg, args, **kwargs)

    def checks(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log checks (verbosity level 2)."""
        if self.isEnabledFor(CHECKS_LEVEL):
            self._log(CHECKS_LEVEL, msg, args, **kwargs)


def get_logger() -> SchedLogger:
    """Get the cpmsched logger instance (singleton).

    Returns:
        The cpmsched logger singleton instance
    """
    logging.setLoggerClass(SchedLogger)
    logger = logging.getLogger("cpmsched")
    assert isinstance(logger, SchedLogger)
    return logger


def setup_logger(verbosity: int, stream: TextIO | None = None) -> None:
    """Configure the cpmsched logger with a verbosity level.

    Can be called multiple times to reconfigure the logger.

    Args:
        verbosity: 0=silent (errors only), 1=changes, 2=checks, 3=debug
        stream: Optional output stream (defaults to sys.stderr)
    """
    logger = get_logger()
    logger.handlers.clear()

    level_map = {
        0: logging.ERROR,
        1: CHANGES_LEVEL,
        2: CHECKS_LEVEL,
        3: logging.DEBUG,
    }
    logger.setLevel(level_map.get(verbosity, logging.ERROR))

    output_stream = stream if stream is not None else sys.stderr

    handler = logging.StreamHandler(output_stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False


def reset_logger() -> None:
    """Reset the logger to a clean state (used between tests)."""
    logger = get_logger()
    logger.handlers.clear()
    logger.setLevel(logging.ERROR)
