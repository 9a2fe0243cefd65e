"""
Structured logging for the Poster bridge services.

Module loggers (``get_logger(__name__)``) carry no handlers of their own; they
propagate to the ``poster_bridge`` package logger. ``configure_logging`` puts a
single JSON handler there, with the level taken from ``Settings.log_level``.
Each line uses the field names Cloud Logging understands (``severity``,
``message``, ``time``) plus the service label and the caller's ``extra=``
fields.

The module must not be called ``logging.py``: it would shadow the standard
library module for uvicorn and friends.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .settings import Settings

PACKAGE_LOGGER = "poster_bridge"


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "severity": record.levelname,
            "service": self.service,
            "logger": record.name,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        fields = getattr(record, "fields", None)
        if fields:
            payload.update({k: v for k, v in fields.items() if k not in payload})

        if record.exc_info:
            payload["stack_trace"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class JsonLoggerAdapter(logging.LoggerAdapter):
    """Stores the caller's ``extra`` mapping under ``record.fields``."""

    def process(self, msg: str, kwargs: dict[str, Any]):
        fields = kwargs.pop("extra", None)
        kwargs["extra"] = {"fields": dict(fields)} if fields else {}
        return msg, kwargs


def configure_logging(settings: Settings, *, service: str) -> logging.Logger:
    """Attach the JSON handler to the package logger; repeated calls reconfigure it."""
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.propagate = False

    handler = next((h for h in logger.handlers if isinstance(h.formatter, JsonFormatter)), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        logger.addHandler(handler)
    handler.setFormatter(JsonFormatter(service))
    return logger


def get_logger(name: str) -> JsonLoggerAdapter:
    return JsonLoggerAdapter(logging.getLogger(name), {})
