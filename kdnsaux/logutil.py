"""Logging helpers."""

from __future__ import annotations

import logging

_log = logging.getLogger("kdnsaux")


def log_with_prefix(prefix: str, text: str) -> None:
    """Log every line of *text* as ``<prefix> | <line>``."""
    for line in text.split("\n"):
        _log.info("%s | %s", prefix, line)