"""Levelled, timestamped logging to standard output and standard error."""

from __future__ import annotations

import sys
from datetime import datetime
from enum import IntEnum


class LogLevel(IntEnum):
    """Severity levels, lowest first."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3

    @classmethod
    def parse(cls, name: str) -> LogLevel:
        """Return the level called ``name``, ignoring case."""
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"invalid log level: {name}") from None


_threshold = LogLevel.DEBUG


def set_log_level(level: str) -> None:
    """Set the lowest level that is written; raise ValueError for unknown names."""
    global _threshold
    _threshold = LogLevel.parse(level)


def _emit(level: LogLevel, message: str, args: tuple) -> None:
    if level < _threshold:
        return
    text = message % args if args else message
    stamp = datetime.now().strftime("%Y/%m/%d %H:%M:%S.%f")
    stream = sys.stderr if level is LogLevel.ERROR else sys.stdout
    print(f"{stamp} {level.name} {text}", file=stream, flush=True)


def debug(message: str, *args: object) -> None:
    """Write a DEBUG line to standard output."""
    _emit(LogLevel.DEBUG, message, args)


def info(message: str, *args: object) -> None:
    """Write an INFO line to standard output."""
    _emit(LogLevel.INFO, message, args)


def warning(message: str, *args: object) -> None:
    """Write a WARNING line to standard output."""
    _emit(LogLevel.WARNING, message, args)


def error(message: str, *args: object) -> None:
    """Write an ERROR line to standard error."""
    _emit(LogLevel.ERROR, message, args)