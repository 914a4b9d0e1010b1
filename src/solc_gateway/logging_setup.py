"""
JSON-lines logging bootstrap.
Installs a single structured handler on the root logger early in CLI startup.
"""

import json
import logging
import os
import sys
from typing import TextIO

from solc_gateway.utils import utc_ts

DEFAULT_LEVEL = os.environ.get("SOLC_GATEWAY_LOG_LEVEL", "INFO").upper()

# LogRecord attributes that are not user-supplied extras
_RECORD_FIELDS = frozenset(
    {
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "name",
        "message",
        "taskName",
    }
)


class JsonLinesFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": utc_ts(),
            "lvl": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for k, v in record.__dict__.items():
            if k in _RECORD_FIELDS:
                continue
            base.setdefault(k, v)
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


class JsonLinesHandler(logging.StreamHandler):
    def __init__(self, stream: TextIO | None = None):
        super().__init__(stream or sys.stderr)
        self.setFormatter(JsonLinesFormatter())


def init_logging(level: str | None = None, stream: TextIO | None = None) -> None:
    level = (level or DEFAULT_LEVEL).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    # Remove existing handlers of the same kind to avoid duplicates
    for h in list(root.handlers):
        if isinstance(h, JsonLinesHandler):
            root.removeHandler(h)
    root.addHandler(JsonLinesHandler(stream))
