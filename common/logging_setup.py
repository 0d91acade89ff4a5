from __future__ import annotations

import logging
import os
import sys
import json
import time
from typing import Any, Dict, Optional, Union


_STREAMS = ("stderr", "stdout")


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON log formatter:
      { "t": 169, "lvl": "INFO", "name": "ip_match", "msg": "text", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        # Structured fields are passed as extra={"extra": {...}}
        if hasattr(record, "extra") and isinstance(record.extra, dict):  # type: ignore[attr-defined]
            payload["extra"] = record.extra  # type: ignore[attr-defined]
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # numpy scalars and the like fall back to str()
        return json.dumps(payload, ensure_ascii=False, default=str)


def resolve_level(level: Union[str, int, None]) -> int:
    """
    Numeric level from an int, a name ("debug", "WARN", ...), env LOG_LEVEL,
    or INFO when none of those gives a known level.
    """
    if isinstance(level, int):
        return level
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = logging.getLevelName(name)
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(
    level: Union[str, int, None] = None,
    *,
    stream: str = "stderr",
    force: bool = False,
) -> None:
    """
    Configure the root logger with JSON formatting.

    Module loggers call this with no arguments at import, so only the first
    call takes effect unless `force=True`.
    """
    root = logging.getLogger()
    if getattr(root, "_stereo_ip_configured", False) and not force:
        return
    if stream not in _STREAMS:
        raise ValueError(f"Unknown log stream: {stream!r} (expected one of {_STREAMS})")

    handler = logging.StreamHandler(getattr(sys, stream))
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolve_level(level))
    root._stereo_ip_configured = True  # type: ignore[attr-defined]


def configure_from_dict(section: Optional[Dict[str, Any]]) -> None:
    """Apply a `logging:` config section ({level, stream}), replacing any earlier setup."""
    section = section or {}
    setup_logging(section.get("level"), stream=str(section.get("stream", "stderr")), force=True)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)
