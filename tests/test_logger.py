import json
import logging

import pytest

from cbdcp.logger import (
    TRACE_LEVEL,
    JsonFormatter,
    Logger,
    get_logger,
    init_default_logger,
    set_logger,
)


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=0)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    backend = logging.getLogger("tests.cbdcp.capture")
    backend.setLevel(TRACE_LEVEL)
    backend.propagate = False
    handler = _ListHandler()
    backend.addHandler(handler)
    yield Logger(backend), handler
    backend.removeHandler(handler)


@pytest.fixture
def restore_logger():
    previous = get_logger()
    backend = logging.getLogger("cbdcp")
    handlers = list(backend.handlers)
    level = backend.level
    propagate = backend.propagate
    yield
    set_logger(previous)
    for handler in list(backend.handlers):
        backend.removeHandler(handler)
    for handler in handlers:
        backend.addHandler(handler)
    backend.setLevel(level)
    backend.propagate = propagate


@pytest.mark.parametrize(
    ("method", "expected"),
    [
        ("trace", TRACE_LEVEL),
        ("debug", logging.DEBUG),
        ("info", logging.INFO),
        ("warn", logging.WARNING),
        ("error", logging.ERROR),
    ],
)
def test_methods_log_at_matching_level(captured, method, expected):
    logger, handler = captured
    getattr(logger, method)("message")
    assert [record.levelno for record in handler.records] == [expected]


def test_message_formatted_with_args(captured):
    logger, handler = captured
    logger.info("vb %s seq %s", 3, 9)
    assert handler.records[0].getMessage() == "vb 3 seq 9"


def test_message_without_args_kept_verbatim(captured):
    logger, handler = captured
    text = "100% done"
    logger.info(text)
    assert handler.records[0].getMessage() == text


def test_log_level_is_case_insensitive(captured):
    logger, handler = captured
    logger.log("INFO", "x")
    assert handler.records[0].levelno == logging.INFO


def test_log_unknown_level_raises(captured):
    logger, _ = captured
    with pytest.raises(ValueError):
        logger.log("loud", "x")


def _record(level, message):
    return logging.LogRecord("n", level, __file__, 1, message, None, None)


def test_json_formatter_fields():
    data = json.loads(JsonFormatter().format(_record(logging.INFO, "dcp stream started")))
    assert data["message"] == "dcp stream started"
    assert data["level"] == "info"
    assert "time" in data


def test_json_formatter_warning_level():
    data = json.loads(JsonFormatter().format(_record(logging.WARNING, "w")))
    assert data["level"] == "warning"


def test_json_formatter_trace_level():
    data = json.loads(JsonFormatter().format(_record(TRACE_LEVEL, "t")))
    assert data["level"] == "trace"


def test_set_and_get_logger(restore_logger):
    logger = Logger(logging.getLogger("tests.cbdcp.other"))
    set_logger(logger)
    assert get_logger() is logger


def test_init_default_logger(restore_logger):
    logger = init_default_logger("debug")
    assert get_logger() is logger
    assert logger.backend.level == logging.DEBUG
    assert isinstance(logger.backend.handlers[0].formatter, JsonFormatter)


def test_init_default_logger_rejects_bad_level(restore_logger):
    before = get_logger()
    with pytest.raises(ValueError):
        init_default_logger("nonsense")
    assert get_logger() is before