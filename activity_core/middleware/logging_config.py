"""
Logging setup for the activity core.

Services attach context with ``extra=`` (activity_id, report_id, job_name,
duration_ms, merged_ids, method). Two renderings of the same records:

    readable   one colored line per record, context as ``key=value`` tags
    json       one JSON object per line for the log shipper

LOG_FORMAT (readable | json) and LOG_LEVEL override the per-environment
defaults: readable + DEBUG outside production, json + INFO in production.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("activity_id", "report_id", "job_name", "merged_ids", "method", "duration_ms")

_QUIET_LOGGERS = ("urllib3", "httpx", "httpcore", "anthropic", "openai", "sqlalchemy.engine",
                  "alembic")


def _context(record: logging.LogRecord) -> dict:
    return {k: getattr(record, k) for k in CONTEXT_FIELDS if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color=True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"
        tags = " ".join(f"{k}={v}" for k, v in _context(record).items())
        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        if tags:
            line += f"  [{tags}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for ``app``'s environment."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    fmt = os.getenv("LOG_FORMAT", "json" if production else "readable").lower()
    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        JSONFormatter() if fmt == "json" else ReadableFormatter(color=sys.stderr.isatty())
    )

    root = logging.getLogger()
    # create_app() runs once per test session and once per CLI call
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
