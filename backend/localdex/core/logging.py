"""Structured logging for localdex.

Records are written to stderr so CLI output on stdout stays parseable.
Fields passed through ``extra`` with a ``ctx_`` prefix (``ctx_source_id``,
``ctx_task_id`` and so on) are collected under a ``ctx`` object.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import orjson

LEVEL_ENV = "LDX_LOG_LEVEL"
FORMAT_ENV = "LDX_LOG_FORMAT"
_CTX_PREFIX = "ctx_"
_HANDLER_NAME = "localdex"
_NOISY = ("watchdog", "urllib3", "multipart")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        ctx = {key[len(_CTX_PREFIX) :]: value for key, value in vars(record).items() if key.startswith(_CTX_PREFIX)}
        if ctx:
            payload["ctx"] = ctx
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int | None = None, use_json: bool | None = None) -> None:
    """Install the localdex handler on the root logger, replacing a previous one."""
    level = level or os.environ.get(LEVEL_ENV, "INFO")
    if use_json is None:
        use_json = os.environ.get(FORMAT_ENV, "json").lower() != "text"
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        JsonFormatter() if use_json else logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
    )
    root = logging.getLogger()
    root.handlers = [existing for existing in root.handlers if existing.get_name() != _HANDLER_NAME]
    root.addHandler(handler)
    root.setLevel(level if isinstance(level, int) else level.upper())
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.captureWarnings(True)


def get_logger(name: str = "localdex") -> logging.Logger:
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "get_logger"]
