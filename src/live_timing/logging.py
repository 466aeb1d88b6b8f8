"""Logging setup shared by the server, the replay engine and the stream client.

Logs always go to stderr: `live-timing watch` writes one JSON notification
per line to stdout, and that stream has to stay machine readable.

Environment variables:
  LOG_LEVEL  - level for live_timing loggers (default INFO)
  LOG_FORMAT - optional override of the record format

The websockets and uvicorn access loggers are chatty (a line per frame
or per request), so they are held at WARNING unless LOG_LEVEL is DEBUG.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
QUIET_LIBRARIES = ("websockets", "uvicorn.access")

_handler: Optional[logging.Handler] = None


def parse_level(level: Optional[str]) -> int:
    """Map a level name such as "info" to its number; unknown names raise ValueError."""
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    value = logging.getLevelName(name)
    if not isinstance(value, int):
        raise ValueError(f"unknown log level {level!r}")
    return value


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Install the stderr handler once; later calls adjust level and format."""
    global _handler
    value = parse_level(level)
    formatter = logging.Formatter(fmt or os.environ.get("LOG_FORMAT") or DEFAULT_FORMAT)
    root = logging.getLogger()
    if _handler is None:
        # Replace whatever basicConfig or a runner installed before us
        for h in list(root.handlers):
            root.removeHandler(h)
        _handler = logging.StreamHandler(stream=sys.stderr)
        root.addHandler(_handler)
    if fmt or _handler.formatter is None:
        _handler.setFormatter(formatter)
    root.setLevel(value)
    library_level = logging.DEBUG if value <= logging.DEBUG else logging.WARNING
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if _handler is None:
        try:
            configure_logging()
        except ValueError:
            # A bad LOG_LEVEL is reported by the CLI; importing must not fail on it
            configure_logging("INFO")
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "parse_level"]
