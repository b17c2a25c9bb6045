"""Structured logging — JSON formatter and setup for the intake pipeline.

Log records never carry raw payload content. Components attach only
machine-readable extras, which the JSON formatter surfaces when present:
    error_code   finding / exception code, e.g. "OVERSIZE_INPUT"
    node         path of the node involved, e.g. "card.sections[2]"
    index        position of an item inside a batch
    size_bytes   payload size for ceiling violations
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

_EXTRA_KEYS = ("error_code", "node", "index", "size_bytes")


class JSONFormatter(logging.Formatter):
    """Format logs as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "text") -> logging.Handler:
    """Configure root logging once, on startup. Returns the installed handler."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler
