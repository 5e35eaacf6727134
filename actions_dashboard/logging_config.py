"""JSON-lines logging for the dashboard server.

Every record is emitted as one JSON object on stderr so request logs,
cache decisions and background refresh failures can be shipped to a log
aggregator without custom parsing.

Usage
-----
::

    from actions_dashboard.logging_config import setup_logging

    logger = setup_logging("actions_dashboard")
    logger.info("cache miss", extra={"owner": "octo", "repo": "hello"})

Records logged from the refresher pool or an SSE worker carry
``"background": true`` and the thread name, which is how a refresh that
outlives its request shows up in the log stream.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone

# extra= keys copied onto the JSON line; string values are sanitized
STRUCTURED_FIELDS = ("owner", "repo", "workflow_id", "cache_key", "tier")

# thread_name_prefix of BackgroundRefresher and the SSE worker name
BACKGROUND_THREAD_PREFIXES = ("cache-refresh", "dashboard-stream")

_CONTROL_CHAR_RE = re.compile(r"[\r\n\x00-\x1f\x7f]")


def sanitize_log(value: object) -> str:
    """Strip newlines and control characters from a user-provided value.

    Owner/repo names arrive from query strings; removing control characters
    keeps a crafted value from forging extra log lines.
    """
    return _CONTROL_CHAR_RE.sub("", str(value))


class JSONFormatter(logging.Formatter):
    def __init__(self, fields: tuple[str, ...] = STRUCTURED_FIELDS):
        super().__init__()
        self.fields = fields

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.threadName and record.threadName.startswith(BACKGROUND_THREAD_PREFIXES):
            entry["background"] = True
            entry["thread"] = record.threadName
        for key in self.fields:
            val = getattr(record, key, None)
            if val is None:
                continue
            entry[key] = sanitize_log(val) if isinstance(val, str) else val
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _StderrHandler(logging.StreamHandler):
    """StreamHandler bound to whatever ``sys.stderr`` is at emit time.

    pytest's ``capsys`` swaps ``sys.stderr`` per test.
    """

    def __init__(self):
        super().__init__()

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass


def setup_logging(name: str = "actions_dashboard", level: str | None = None) -> logging.Logger:
    """Configure the package logger once and return it.

    Module loggers inside the package propagate here.  A later call with an
    explicit ``level`` only adjusts the level.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        if level:
            logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        return logger

    resolved = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    logger.setLevel(getattr(logging, resolved, logging.INFO))
    handler = _StderrHandler()
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger
