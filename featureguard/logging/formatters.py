"""
Structured log output.
"""

import json
import logging
from datetime import datetime, timezone


class JsonFormatter(logging.Formatter):
    """
    Render each record as one JSON object.

    The object carries ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``
    and ``message``. When the record has exception info the formatted
    traceback is added under ``exc_info``, so observer failures logged with
    ``logger.exception`` keep their stack in JSON output.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)
