"""Centralized logger configuration for the MPC engine.

Every module of the package calls `LoggingUtil.get_logger(__name__)` at import
time. The level is read from the `LOGLEVEL` environment variable each time a
logger is requested, so it can be changed between comparison runs without
touching the code.
"""

import logging
import os

LOG_FORMAT = "%(asctime)s - [%(name)s][%(levelname)s] %(message)s"


class LoggingUtil:
    """Hands out pre-configured console loggers."""

    @staticmethod
    def resolve_level(default: int = logging.INFO) -> int:
        """Returns the numeric level named by `LOGLEVEL`, or `default` if unset or unknown."""
        level_name = os.getenv("LOGLEVEL", "").strip().upper()
        level = logging.getLevelName(level_name) if level_name else default
        return level if isinstance(level, int) else default

    @staticmethod
    def get_logger(logger_name: str) -> logging.Logger:
        """Retrieves a configured logger instance.

        Args:
            logger_name: The name of the logger (typically `__name__` of the caller).

        Returns:
            A `logging.Logger` writing to the console with the package format.
        """
        logger = logging.getLogger(logger_name)
        logger.setLevel(LoggingUtil.resolve_level())

        # Repeated calls must not stack handlers
        if not logger.handlers:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(console_handler)

        return logger
