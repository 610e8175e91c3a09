# ==============================
# Logging Bootstrap
# ==============================
"""
Logging bootstrap.

Goals:
- Centralize logger configuration using Settings.logging.
- Provide structured context fields (session_id, turn_id, collection, op).
- stdlib logging + JSON-lines formatter.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional

from intentchat.config.schema import Settings

CONTEXT_FIELDS = ("session_id", "turn_id", "collection", "op")


@dataclass(frozen=True)
class LogContext:
    session_id: Optional[str] = None
    turn_id: Optional[str] = None
    collection: Optional[str] = None
    op: Optional[str] = None


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k in CONTEXT_FIELDS:
            value = getattr(record, k, None)
            if value is not None:
                payload[k] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def bootstrap_logger(settings: Settings) -> logging.Logger:
    """
    Configure root logger based on settings.
    Returns the package logger ("intentchat").
    """
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    # clear existing handlers to avoid duplicates in reload
    root.handlers = []

    formatter = JsonLineFormatter()
    if settings.logging.console:
        # stderr keeps the chat transcript on stdout readable
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    if settings.logging.file:
        log_path = settings.resolve_path(settings.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    if not root.handlers:
        root.addHandler(logging.NullHandler())

    return logging.getLogger("intentchat")


def with_context(logger: logging.Logger, ctx: LogContext) -> logging.LoggerAdapter:
    return logging.LoggerAdapter(
        logger,
        {
            "session_id": ctx.session_id,
            "turn_id": ctx.turn_id,
            "collection": ctx.collection,
            "op": ctx.op,
        },
    )
