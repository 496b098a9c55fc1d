"""Configure the root logger's level and output format."""

from __future__ import annotations

import json
import logging
from datetime import datetime

DEFAULT_LEVEL = "info"
DEFAULT_LOG_TIMESTAMP = False

FORMAT_TEXT = "text"
FORMAT_COLOR = "color"
FORMAT_JSON = "json"

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_COLORS = {
    "trace": 37,
    "debug": 37,
    "info": 36,
    "warning": 33,
    "error": 31,
    "fatal": 31,
}

_SAFE_CHARS = frozenset("-._/@^+")

_handler: logging.Handler | None = None


def _parse_level(level: str) -> int:
    try:
        return _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"parsing log level: not a valid log level: {level!r}") from None


def _level_name(levelno: int) -> str:
    if levelno >= logging.CRITICAL:
        return "fatal"
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warning"
    if levelno >= logging.INFO:
        return "info"
    if levelno >= logging.DEBUG:
        return "debug"
    return "trace"


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")


def _quote(value: str) -> str:
    if all(ch.isalnum() or ch in _SAFE_CHARS for ch in value):
        return value
    return json.dumps(value, ensure_ascii=False)


def _message(record: logging.LogRecord, formatter: logging.Formatter) -> str:
    message = record.getMessage()
    if record.exc_info:
        message = f"{message}\n{formatter.formatException(record.exc_info)}"
    return message


class _TextFormatter(logging.Formatter):
    def __init__(self, colors: bool, full_timestamp: bool) -> None:
        super().__init__()
        self._colors = colors
        self._full_timestamp = full_timestamp

    def format(self, record: logging.LogRecord) -> str:
        level = _level_name(record.levelno)
        message = _message(record, self)
        if not self._colors:
            return f"time={_quote(_timestamp(record))} level={level} msg={_quote(message)}"
        label = f"\x1b[{_COLORS[level]}m{level.upper()[:4]}\x1b[0m"
        if self._full_timestamp:
            stamp = _timestamp(record)
        else:
            stamp = f"{int(record.relativeCreated / 1000):04d}"
        return f"{label}[{stamp}] {message}"


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "level": _level_name(record.levelno),
            "msg": _message(record, self),
            "time": _timestamp(record),
        }
        return json.dumps(entry, sort_keys=True, ensure_ascii=False)


def configure(
    level: str = DEFAULT_LEVEL,
    fmt: str = FORMAT_TEXT,
    log_timestamp: bool = DEFAULT_LOG_TIMESTAMP,
) -> logging.Handler:
    """Set the root logger's level and formatter; return the handler in use."""
    global _handler
    root = logging.getLogger()
    root.setLevel(_parse_level(level))

    formatter: logging.Formatter
    if fmt == FORMAT_TEXT:
        formatter = _TextFormatter(colors=False, full_timestamp=log_timestamp)
    elif fmt == FORMAT_COLOR:
        formatter = _TextFormatter(colors=True, full_timestamp=log_timestamp)
    elif fmt == FORMAT_JSON:
        formatter = _JSONFormatter()
    else:
        raise ValueError(
            f"not a valid log format: {fmt!r}. Please specify one of (text, color, json)"
        )

    if _handler is None:
        _handler = logging.StreamHandler()
    if _handler not in root.handlers:
        root.addHandler(_handler)
    _handler.setFormatter(formatter)
    return _handler