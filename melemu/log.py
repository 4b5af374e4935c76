"""Levelled log output to standard error."""

from __future__ import annotations

import enum
from typing import Any

from .printf import cprintf, snformat

__all__ = ["LogLevel", "FatalError", "set_level", "get_level", "log",
           "fatal", "logassert"]

_MESSAGE_BUFFER = 1024


class LogLevel(enum.IntEnum):
    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4
    FATAL = 5
    METRC = 6


_LEVEL_NAMES = {
    LogLevel.TRACE: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO ",
    LogLevel.WARN: "WARN ",
    LogLevel.ERROR: "ERROR",
    LogLevel.FATAL: "FATAL",
    LogLevel.METRC: "METRC",
}


class FatalError(Exception):
    """Raised after a fatal condition has been logged."""

    def __init__(self, module: str, message: str) -> None:
        super().__init__(f"{module}: {message}")
        self.module = module
        self.message = message


_threshold = LogLevel.DEBUG


def set_level(level: int) -> None:
    """Set the lowest level that is printed."""
    global _threshold
    _threshold = LogLevel(level)


def get_level() -> LogLevel:
    """Return the lowest level that is printed."""
    return _threshold


def _emit(level: LogLevel, module: str, fmt: str, args: tuple) -> str:
    message = snformat(_MESSAGE_BUFFER, fmt, *args)
    if level >= _threshold:
        cprintf("[%s] %s: %s\n", _LEVEL_NAMES[level], module, message)
    return message


def log(level: int, module: str, fmt: str, *args: Any) -> None:
    """Print a formatted message if ``level`` reaches the threshold."""
    level = LogLevel(level)
    if level >= _threshold:
        _emit(level, module, fmt, args)


def fatal(module: str, fmt: str, *args: Any) -> None:
    """Log a fatal message and raise FatalError."""
    message = _emit(LogLevel.FATAL, module, fmt, args)
    raise FatalError(module, message)


def logassert(cond: Any, module: str, fmt: str, *args: Any) -> None:
    """Do nothing if ``cond`` holds, otherwise behave like :func:`fatal`."""
    if cond:
        return
    fatal(module, fmt, *args)