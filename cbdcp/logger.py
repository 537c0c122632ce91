"""Levelled logging with a JSON formatter and a replaceable package logger."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

ERROR = "error"
WARN = "warn"
INFO = "info"
DEBUG = "debug"
TRACE = "trace"

TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    ERROR: logging.ERROR,
    WARN: logging.WARNING,
    "warning": logging.WARNING,
    INFO: logging.INFO,
    DEBUG: logging.DEBUG,
    TRACE: TRACE_LEVEL,
}

_LEVEL_NAMES = {
    logging.CRITICAL: "fatal",
    logging.ERROR: "error",
    logging.WARNING: "warning",
    logging.INFO: "info",
    logging.DEBUG: "debug",
    TRACE_LEVEL: "trace",
}

_BACKEND_NAME = "cbdcp"


def _parse_level(level: str) -> int:
    try:
        return _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"not a valid log level: {level!r}") from None


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object with level, message and time."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "message": record.getMessage(),
            "time": datetime.fromtimestamp(record.created, timezone.utc)
            .astimezone()
            .isoformat(timespec="seconds"),
        }
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class Logger:
    """Printf-style logging on top of a standard logging.Logger."""

    def __init__(self, backend: logging.Logger) -> None:
        self.backend = backend

    def trace(self, message: str, *args: Any) -> None:
        self.log(TRACE, message, *args)

    def debug(self, message: str, *args: Any) -> None:
        self.log(DEBUG, message, *args)

    def info(self, message: str, *args: Any) -> None:
        self.log(INFO, message, *args)

    def warn(self, message: str, *args: Any) -> None:
        self.log(WARN, message, *args)

    def error(self, message: str, *args: Any) -> None:
        self.log(ERROR, message, *args)

    def log(self, level: str, message: str, *args: Any) -> None:
        """Log `message % args` at the named level."""
        self.backend.log(_parse_level(level), message, *args)


@dataclass
class _LoggerSlot:
    current: Logger


_slot = _LoggerSlot(Logger(logging.getLogger(_BACKEND_NAME)))


def get_logger() -> Logger:
    """Return the logger the package writes to."""
    return _slot.current


def set_logger(logger: Logger) -> Logger:
    """Replace the logger the package writes to and return the previous one."""
    previous = _slot.current
    _slot.current = logger
    return previous


def init_default_logger(level: str = INFO) -> Logger:
    """Install a JSON logger on stderr at the given level and make it current."""
    numeric = _parse_level(level)

    backend = logging.getLogger(_BACKEND_NAME)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    for old in list(backend.handlers):
        backend.removeHandler(old)
    backend.addHandler(handler)
    backend.setLevel(numeric)
    backend.propagate = False

    logger = Logger(backend)
    set_logger(logger)
    return logger