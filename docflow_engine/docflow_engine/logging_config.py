"""Logging setup for processes embedding the engine.

Two output modes share the same root handler:

* plain text (default) for local development, and
* single-line JSON, enabled with ``DOCFLOW_STRUCTURED_LOGGING=true``, for
  log aggregators that index fields without regex parsing.

Output schema per JSON line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "docflow_engine.numbering.allocator",
        "message": "Generated document number ...",
        "tenant_id": "t1",           // present when passed via ``extra``
        "exc_info": "Traceback ..."  // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# Structured context keys copied from ``extra={...}`` into the JSON payload.
_CONTEXT_FIELDS = ("tenant_id", "document_id", "counter_id", "actor")

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(level: str = "INFO", *, structured: bool = False) -> logging.Handler:
    """Install a single stream handler on the root logger.

    Existing root handlers are replaced so repeated calls do not duplicate
    output.  Returns the installed handler.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if structured else logging.Formatter(_PLAIN_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # SQL echo is controlled by the engine, not by the root level.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return handler
