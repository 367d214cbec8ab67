"""
Unit tests for the logging module.

Covers:
- Logger creation and retrieval (get_logger, ensure_logger)
- Logger configuration (setup_logger)
- JSON formatter output (JsonFormatter)
"""

import json
import logging
import sys

import pytest

from featureguard.logging import JsonFormatter, ensure_logger, get_logger, setup_logger


@pytest.fixture
def dummy_settings():
    class DummySettings:
        DEBUG = False
        LOG_LEVEL = "WARNING"
        LOG_JSON = True

    return DummySettings()


def test_get_logger_uses_settings(dummy_settings):
    logger = get_logger("test.featureguard.settings", dummy_settings)
    assert logger.name == "test.featureguard.settings"
    assert logger.level == logging.WARNING
    assert isinstance(logger.handlers[0].formatter, JsonFormatter)


def test_get_logger_defaults_to_info():
    logger = get_logger("test.featureguard.default")
    assert logger.level == logging.INFO
    assert not isinstance(logger.handlers[0].formatter, JsonFormatter)


def test_ensure_logger_returns_existing_logger():
    logger = logging.getLogger("test.featureguard.existing")
    assert ensure_logger(logger, "ignored") is logger


def test_ensure_logger_creates_new_logger():
    ensured = ensure_logger(None, "test.featureguard.new")
    assert ensured.name == "test.featureguard.new"


def test_ensure_logger_raises_without_name():
    with pytest.raises(ValueError):
        ensure_logger()


def test_setup_logger_debug_overrides_level():
    logger = setup_logger("test.featureguard.debug", level="ERROR", debug=True)
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1


def test_setup_logger_replaces_handlers():
    setup_logger("test.featureguard.repeat")
    logger = setup_logger("test.featureguard.repeat")
    assert len(logger.handlers) == 1


def test_json_formatter_output():
    record = logging.LogRecord(
        name="featureguard.db",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Created role %s",
        args=("manager",),
        exc_info=None,
    )
    data = json.loads(JsonFormatter().format(record))
    assert data["level"] == "INFO"
    assert data["logger"] == "featureguard.db"
    assert data["message"] == "Created role manager"
    assert "timestamp" in data


def test_json_formatter_includes_traceback():
    try:
        raise RuntimeError("observer down")
    except RuntimeError:
        record = logging.LogRecord(
            name="featureguard.services",
            level=logging.ERROR,
            pathname=__file__,
            lineno=1,
            msg="Observer failed",
            args=(),
            exc_info=sys.exc_info(),
        )
    data = json.loads(JsonFormatter().format(record))
    assert "RuntimeError: observer down" in data["exc_info"]


def test_ensure_logger_leaves_host_logging_alone(monkeypatch):
    host_handler = logging.StreamHandler()
    monkeypatch.setattr(logging.getLogger(), "handlers", [host_handler])
    logger = logging.getLogger("test.featureguard.hosted")
    logger.setLevel(logging.WARNING)

    ensured = ensure_logger(None, "test.featureguard.hosted")
    assert ensured is logger
    assert ensured.handlers == []
    assert ensured.level == logging.WARNING


def test_ensure_logger_keeps_existing_handlers(monkeypatch):
    monkeypatch.setattr(logging.getLogger(), "handlers", [])
    logger = logging.getLogger("test.featureguard.custom")
    custom = logging.NullHandler()
    logger.handlers = [custom]

    assert ensure_logger(None, "test.featureguard.custom").handlers == [custom]


def test_ensure_logger_configures_console_without_host_logging(monkeypatch):
    monkeypatch.setattr(logging.getLogger(), "handlers", [])
    ensured = ensure_logger(None, "test.featureguard.console")
    assert len(ensured.handlers) == 1
    assert ensured.level == logging.INFO
