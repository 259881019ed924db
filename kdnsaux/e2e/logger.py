"""Logging interface used by the end-to-end test support code."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

_log = logging.getLogger("kdnsaux.e2e")


class FatalError(Exception):
    """Raised by a logger's fatal methods after the message is logged."""


def _sprint(args: tuple[Any, ...]) -> str:
    """Join operands, with a space between two that are both non-strings."""
    parts: list[str] = []
    previous: Any = None
    for position, arg in enumerate(args):
        if position and not isinstance(arg, str) and not isinstance(previous, str):
            parts.append(" ")
        parts.append(str(arg))
        previous = arg
    return "".join(parts)


def _format(fmt: str, args: tuple[Any, ...]) -> str:
    return fmt % args if args else fmt


def log_with_prefix(
    log_func: Callable[..., Any], prefix: str, text: str
) -> None:
    """Call *log_func* once for every line of *text*, prefixed."""
    for line in text.split("\n"):
        log_func("%s | %s", prefix, line)


class Logger(ABC):
    """Interface for e2e logging."""

    @abstractmethod
    def fatal(self, *args: Any) -> None:
        """Log the operands and raise FatalError."""

    @abstractmethod
    def fatalf(self, fmt: str, *args: Any) -> None:
        """Log the formatted message and raise FatalError."""

    @abstractmethod
    def log(self, *args: Any) -> None:
        """Log the operands."""

    @abstractmethod
    def logf(self, fmt: str, *args: Any) -> None:
        """Log the formatted message."""

    def log_with_prefix(self, prefix: str, text: str) -> None:
        """Log every line of *text* with *prefix*."""
        log_with_prefix(self.logf, prefix, text)


class StandardLogger(Logger):
    """Logger backed by the ``logging`` module."""

    def fatal(self, *args: Any) -> None:
        message = _sprint(args)
        _log.critical("%s", message)
        raise FatalError(message)

    def fatalf(self, fmt: str, *args: Any) -> None:
        message = _format(fmt, args)
        _log.critical("%s", message)
        raise FatalError(message)

    def log(self, *args: Any) -> None:
        _log.info("%s", _sprint(args))

    def logf(self, fmt: str, *args: Any) -> None:
        _log.info("%s", _format(fmt, args))

    def log_with_prefix(self, prefix: str, text: str) -> None:
        log_with_prefix(self.logf, prefix, text)


class _LoggerSlot:
    """Holds the logger currently in use."""

    def __init__(self, logger: Logger) -> None:
        self.current = logger


_slot = _LoggerSlot(StandardLogger())


def get_logger() -> Logger:
    """Return the logger in use."""
    return _slot.current


def set_logger(logger: Logger) -> None:
    """Replace the logger in use; *logger* must implement Logger."""
    if not isinstance(logger, Logger):
        raise TypeError(f"expected a Logger, got {type(logger).__name__}")
    _slot.current = logger