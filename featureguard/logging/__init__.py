"""
Logging helpers for featureguard.

Output goes to stdout, as plain text or one JSON object per line.
"""

from featureguard.logging.formatters import JsonFormatter
from featureguard.logging.manager import Logger, ensure_logger, get_logger, setup_logger

__all__ = [
    "Logger",
    "get_logger",
    "ensure_logger",
    "setup_logger",
    "JsonFormatter",
]
