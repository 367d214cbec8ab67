"""
Logger construction for featureguard.

Adapters, the authorization engine and the role-graph service all take an
optional ``logger`` argument. When none is passed they call
``ensure_logger(None, __name__)``. If the host has configured logging the
module logger is used as is; otherwise a console logger is configured here.
"""

import logging
import sys
from typing import Any, Optional

from featureguard.logging.formatters import JsonFormatter

Logger = logging.Logger

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level(level: str, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    return getattr(logging, level.upper(), logging.INFO)


def setup_logger(
    name: str,
    level: str = "INFO",
    format: str = DEFAULT_FORMAT,
    debug: bool = False,
    json_format: bool = False,
) -> Logger:
    """
    Configure the named logger with a single stdout handler.

    Calling it again for the same name replaces the handler rather than
    stacking a second one.

    Args:
        name: Logger name, normally the module's __name__
        level: Level name; unknown names fall back to INFO
        format: Format string for plain-text output
        debug: Force DEBUG whatever ``level`` says
        json_format: Write one JSON object per record instead of text

    Returns:
        The configured logger
    """
    log_level = _resolve_level(level, debug)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(format))

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def get_logger(
    name: str, settings: Optional[Any] = None, json_format: bool = False
) -> Logger:
    """
    Configure a logger from FeatureGuardSettings-like values.

    ``settings`` may be any object with DEBUG, LOG_LEVEL and LOG_JSON
    attributes; missing attributes keep their defaults.
    """
    if settings is None:
        return setup_logger(name, json_format=json_format)

    return setup_logger(
        name,
        level=getattr(settings, "LOG_LEVEL", None) or "INFO",
        debug=bool(getattr(settings, "DEBUG", False)),
        json_format=json_format or bool(getattr(settings, "LOG_JSON", False)),
    )


def ensure_logger(
    logger: Optional[Logger] = None,
    name: Optional[str] = None,
    settings: Optional[Any] = None,
    json_format: bool = False,
) -> Logger:
    """
    Return ``logger`` when given, otherwise build one for ``name``.

    Without settings, a logger that already has handlers, or one whose
    records reach a configured root logger, is returned untouched so the
    host's logging setup is neither replaced nor duplicated.

    Raises:
        ValueError: If neither a logger nor a name is supplied
    """
    if logger:
        return logger
    if not name:
        raise ValueError("ensure_logger needs a logger or a name to create one")
    if settings is None and not json_format:
        existing = logging.getLogger(name)
        if existing.handlers or logging.getLogger().handlers:
            return existing
    return get_logger(name, settings, json_format)
