"""JSONL diagnostics for the resident process.

Only the `pomo.*` logger tree is configured; short-lived CLI invocations never
call into this module and keep Python's default logging.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO


LOGGER_ROOT = "pomo"

_CORRELATION_KEYS = ("command", "session_id", "phase", "cycle", "event")


class JsonlFormatter(logging.Formatter):
    """One JSON object per record.

    Correlation fields are picked up from `logger.*(..., extra={...})`.
    """

    def __init__(self, *, component: str):
        super().__init__()
        self._component = str(component or "").strip() or LOGGER_ROOT
        self._pid = os.getpid()

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z")
        payload: Dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "component": self._component,
            "pid": self._pid,
            "msg": record.getMessage(),
        }
        for k in _CORRELATION_KEYS:
            v = getattr(record, k, None)
            if v is not None and str(v).strip():
                payload[k] = v if isinstance(v, int) else str(v).strip()

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def parse_level(level: Optional[str], default: int = logging.INFO) -> int:
    value = getattr(logging, str(level or "").strip().upper(), None)
    return value if isinstance(value, int) else default


def setup_resident_logging(
    *,
    component: str = "pomod",
    level: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """Attach (or re-level) the single JSONL handler on the `pomo` logger."""
    lvl = parse_level(level)
    log = logging.getLogger(LOGGER_ROOT)
    log.setLevel(lvl)
    log.propagate = False

    for h in log.handlers:
        if isinstance(h.formatter, JsonlFormatter):
            h.setLevel(lvl)
            return h

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(lvl)
    handler.setFormatter(JsonlFormatter(component=component))
    log.addHandler(handler)
    return handler
