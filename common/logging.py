"""Process-wide log setup for the monitor, treasury and replay entrypoints.

``LOG_FORMAT=json`` emits one JSON object per line; anything else gives a
plain text format. Feed and treasury context travels through ``extra``::

    _LOG.warning("dispatch failed", extra={"scope_id": 10, "feed_id": "ETH_USD"})
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

CONTEXT_KEYS = ("service", "trace_id", "feed_id", "scope_id", "principal")
TEXT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(
            (key, getattr(record, key))
            for key in CONTEXT_KEYS
            if getattr(record, key, None) is not None
        )
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, separators=(",", ":"), default=str)


class ServiceFilter(logging.Filter):
    """Label records that do not name their own ``service``."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "service", None) is None:
            record.service = self.service_name
        return True


def configure_logging(fmt: str | None = None, *, service_name: str | None = None) -> None:
    """Install a single stdout handler on the root logger.

    Safe to call more than once; earlier handlers (including the ones
    uvicorn installs) are replaced. ``LOG_LEVEL`` sets the threshold.
    """
    fmt = (fmt or os.getenv("LOG_FORMAT", "text")).lower()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    if service_name:
        handler.addFilter(ServiceFilter(service_name))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
