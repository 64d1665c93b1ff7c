"""Logging configuration for the facesync services.

All ``facesync.*`` module loggers share the handlers installed once on the
package logger ``facesync``. Records pass a redaction filter first, so
passwords, bearer tokens and the reversible secret never reach a handler even
when an error message embeds a request body.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Optional

PACKAGE_LOGGER = "facesync"

# Format: 2026-01-29 15:30:45 | INFO     | facesync.services.sync | Sync started
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_SECRET_PATTERNS = [
    re.compile(r'("?(?:password|access_token|refresh_token|reversible_secret)"?\s*[:=]\s*"?)[^",\s}]+', re.I),
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+"),
]


class RedactingFilter(logging.Filter):
    """Masks credential values in log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern in _SECRET_PATTERNS:
            redacted = pattern.sub(r"\1***", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class ColoredFormatter(logging.Formatter):
    """Formatter colouring the level and logger name on terminals."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def __init__(self, fmt: str = LOG_FORMAT, datefmt: str = DATE_FORMAT, stream=None):
        super().__init__(fmt, datefmt=datefmt)
        self.stream = stream or sys.stdout

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if color is None or not getattr(self.stream, "isatty", lambda: False)():
            return super().format(record)

        # Colour a copy; the record is shared with the other handlers
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        colored.name = f"{self.BOLD}{record.name}{self.RESET}"
        return super().format(colored)


def _resolve_level(level: Optional[str]) -> int:
    if level is None:
        try:
            from facesync.core.config import get_config

            level = get_config().log_level
        except ValueError:
            level = "INFO"
    return getattr(logging, level.upper(), logging.INFO)


def setup_logging(
    name: str = PACKAGE_LOGGER,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Install console (and optional file) handlers on a logger.

    Calling it again for an already configured logger only adjusts the
    level when one is given.

    Args:
        name: Logger to configure; scripts pass their ``__name__``
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL. If None, read from
               Config (LOG_LEVEL), falling back to INFO on a broken environment.
        log_file: Optional path of a plain-text log file

    Returns:
        The configured logger.

    Example:
        >>> logger = setup_logging(__name__, level="DEBUG")
        >>> logger.info("Sync started")
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        if level is not None:
            logger.setLevel(_resolve_level(level))
        return logger

    logger.setLevel(_resolve_level(level))
    redact = RedactingFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(stream=sys.stdout))
    console_handler.addFilter(redact)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        file_handler.addFilter(redact)
        logger.addHandler(file_handler)

    # Avoid duplicates through the root logger
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger.

    ``facesync.*`` loggers propagate to the package logger, which is
    configured on first use; any other name gets its own handlers.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.warning(f"Sync of {user_id} failed, will retry")
    """
    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        setup_logging(PACKAGE_LOGGER)
        return logging.getLogger(name)
    return setup_logging(name)
