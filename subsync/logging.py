"""Logging setup for subsync entrypoints.

Library modules log through ``logging.getLogger(__name__)`` with lazy
percent-style arguments. This module only normalises the configured level and
installs the root handler for command line runs.

Example:
>>> from subsync.logging import configure_logging
>>> configure_logging("debug")
('DEBUG', False)

"""

from __future__ import annotations

import enum
import logging

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class LogLevel(enum.StrEnum):
    """Supported log level names."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def normalize_log_level(level: str | None) -> tuple[str, bool]:
    """Normalize a log level string and report invalid inputs.

    Parameters
    ----------
    level : str | None
        Raw log level string to normalize.

    Returns
    -------
    tuple[str, bool]
        The normalized log level and a flag indicating invalid input.

    """
    if not level:
        return ("INFO", True)

    normalized = level.strip().upper()
    if normalized == LogLevel.WARN:
        return (LogLevel.WARNING.value, False)
    if normalized in LogLevel.__members__:
        return (normalized, False)

    return ("INFO", True)


def configure_logging(level: str | None, *, force: bool = False) -> tuple[str, bool]:
    """Configure the root logger and return the normalized level.

    Invalid levels fall back to ``INFO``; callers decide whether to warn.
    """
    normalized, invalid = normalize_log_level(level)
    logging.basicConfig(level=normalized, format=DEFAULT_FORMAT, force=force)
    return (normalized, invalid)


__all__ = ["DEFAULT_FORMAT", "LogLevel", "configure_logging", "normalize_log_level"]
