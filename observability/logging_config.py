"""Structured logging for the HMR pipeline.

Every log line is a JSON object. Bound fields (session id, job id, template id)
travel with the adapter returned by :func:`get_logger`.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping


class StructuredFormatter(logging.Formatter):
    """Render log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if fields:
            payload.update(fields)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """Adapter merging bound fields with per-call ``extra``."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        fields = dict(self.extra or {})
        fields.update(kwargs.pop("extra", None) or {})
        kwargs["extra"] = {"fields": fields}
        return msg, kwargs


_handler: logging.Handler | None = None


def configure_logging(level: int | str | None = None, structured: bool | None = None) -> None:
    """Install one stderr handler on the ``hmr`` logger tree.

    ``HMR_LOG_LEVEL`` and ``HMR_LOG_FORMAT`` (``json`` or ``plain``) override
    the defaults when no explicit argument is given.
    """
    if level is None:
        level = os.getenv("HMR_LOG_LEVEL", "INFO").upper()
    if structured is None:
        structured = os.getenv("HMR_LOG_FORMAT", "json").lower() != "plain"

    global _handler
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
    handler = _handler
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    for name in ("hmr", "observability"):
        pkg_logger = logging.getLogger(name)
        pkg_logger.setLevel(level)
        if handler not in pkg_logger.handlers:
            pkg_logger.addHandler(handler)


def get_logger(name: str, **extra: Any) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), extra)


__all__ = ["StructuredFormatter", "StructuredLogger", "configure_logging", "get_logger"]
