"""
Logging Utility for the sync API.

Provides structured logging with appropriate levels and formats.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from tasksync.config import SETTINGS


def _level_from_settings() -> int:
    level = logging.getLevelName(SETTINGS.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def _default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class StructuredLogger:
    """Structured logger emitting one JSON object per line."""

    def __init__(self, name: str, level: int | None = None):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            level: Logging level, defaults to LOG_LEVEL
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level if level is not None else _level_from_settings())

        # Prevent adding handlers multiple times
        if not self.logger.handlers:
            self._setup_handlers()

    def _setup_handlers(self):
        """Set up logging handlers."""
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        self.logger.addHandler(console_handler)

    def _payload(self, level: int, message: str, **kwargs) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": logging.getLevelName(level),
            "message": message,
            "service": self.logger.name,
        }
        log_data.update(kwargs)
        return json.dumps(log_data, default=_default)

    def _log_structured(self, level: int, message: str, **kwargs):
        """
        Log a structured message.

        Args:
            level: Logging level
            message: Log message
            **kwargs: Additional structured data
        """
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self._payload(level, message, **kwargs))

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._log_structured(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._log_structured(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._log_structured(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message."""
        self._log_structured(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log exception with traceback."""
        if self.logger.isEnabledFor(logging.ERROR):
            self.logger.exception(self._payload(logging.ERROR, message, exception=True, **kwargs))


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name, usually the dotted module area

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name)
