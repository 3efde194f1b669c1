# interviewhub/logging_conf.py
# Purpose: One JSON object per log line on stdout, for the service and uvicorn.
# Pitfalls: setup_logging() replaces handlers on every call (create_app calls it),
#           so tests that build several apps do not stack duplicate handlers.

from __future__ import annotations

import json
import logging
from logging.config import dictConfig
from typing import Any

from interviewhub.version import SERVICE_NAME

# record attributes copied into the line when set (pass via `extra=`)
EXTRA_FIELDS = ("cache_key", "remote_code", "module", "funcName")

# loggers pinned to WARNING whatever LOG_LEVEL says
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value not in (None, ""):
                line[field] = value
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route root, uvicorn, fastapi and interviewhub loggers through the JSON handler."""
    level = level.upper()
    console = {"level": level, "handlers": ["console"], "propagate": False}

    loggers: dict[str, Any] = {
        name: dict(console)
        for name in ("uvicorn", "uvicorn.error", "fastapi", "starlette", "interviewhub", "request")
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {**console, "level": "WARNING"}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": JsonFormatter}},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {"level": level, "handlers": ["console"]},
            "loggers": loggers,
        }
    )
