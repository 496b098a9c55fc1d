import json
import logging

import pytest

from layersnap import logsetup


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    handlers = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


def _record(message, level=logging.INFO):
    return logging.LogRecord("test", level, __file__, 1, message, None, None)


def test_configure_sets_level():
    handler = logsetup.configure("debug", logsetup.FORMAT_TEXT, False)
    assert handler in logging.getLogger().handlers
    assert logging.getLogger().level == logging.DEBUG


def test_level_names_are_case_insensitive():
    handler = logsetup.configure("WARN", logsetup.FORMAT_TEXT, False)
    assert handler in logging.getLogger().handlers
    assert logging.getLogger().level == logging.WARNING


def test_trace_level():
    handler = logsetup.configure("trace", logsetup.FORMAT_TEXT, False)
    assert handler in logging.getLogger().handlers
    assert logging.getLogger().level == logsetup.TRACE


def test_invalid_level_raises_and_keeps_level():
    logging.getLogger().setLevel(logging.ERROR)
    with pytest.raises(ValueError, match="parsing log level"):
        logsetup.configure("loud", logsetup.FORMAT_TEXT, False)
    assert logging.getLogger().level == logging.ERROR


def test_invalid_format_raises():
    with pytest.raises(ValueError, match="not a valid log format"):
        logsetup.configure(logsetup.DEFAULT_LEVEL, "xml", False)


def test_json_format_round_trips_message():
    handler = logsetup.configure(logsetup.DEFAULT_LEVEL, logsetup.FORMAT_JSON, False)
    entry = json.loads(handler.format(_record("hello world")))
    assert entry["msg"] == "hello world"
    assert entry["level"] == logsetup.DEFAULT_LEVEL
    assert set(entry) == {"level", "msg", "time"}


def test_text_format_quotes_message():
    handler = logsetup.configure(logsetup.DEFAULT_LEVEL, logsetup.FORMAT_TEXT, False)
    line = handler.format(_record("hello world"))
    assert 'msg="hello world"' in line
    assert "level=info" in line
    assert "\x1b[" not in line


def test_color_format_uses_escape_codes():
    handler = logsetup.configure(logsetup.DEFAULT_LEVEL, logsetup.FORMAT_COLOR, False)
    line = handler.format(_record("hello"))
    assert line.startswith("\x1b[")
    assert line.endswith(" hello")


def test_reconfigure_reuses_one_handler():
    first = logsetup.configure("info", logsetup.FORMAT_TEXT, False)
    second = logsetup.configure("info", logsetup.FORMAT_JSON, True)
    assert first is second
    assert logging.getLogger().handlers.count(second) == 1