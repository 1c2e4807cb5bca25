"""
Structured logging configuration for modelmesh.

Library modules log through logging.getLogger(__name__) with short
event names; the routing context travels in `extra`:

    logger.warning("stream_attempt_failed", extra={
        "candidate": "anthropic/claude-3-5-sonnet-20241022",
        "emitted_chars": 120,
        "error": "Anthropic API error: overloaded",
    })

configure_logging() only decides how those records are rendered:
- production: one JSON object per line on stdout
- anything else: colored text on stderr, routing fields first

The library itself never calls configure_logging(); the CLI does.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

# Shown first, in this order, by DevFormatter
ROUTING_FIELDS = ("provider", "model", "candidate", "stream_id", "tool_name", "server")

_NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai")


def extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields attached to a record via `extra`, in insertion order."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JSONFormatter(logging.Formatter):
    """
    Single-line JSON records.

        {"timestamp": "...", "level": "WARNING",
         "logger": "modelmesh.llm.model_manager",
         "message": "provider_unavailable", "provider": "ollama"}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in extra_fields(record).items():
            entry[key] = _jsonable(value)

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """
    Colored text for terminals.

    Format: [HH:MM:SS] LEVEL logger: event [provider=... model=... other=...]
    """

    COLORS = {
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[41m",  # Red background
    }
    RESET = "\033[0m"

    def _context(self, record: logging.LogRecord) -> str:
        fields = extra_fields(record)
        ordered = [k for k in ROUTING_FIELDS if k in fields]
        ordered += [k for k in fields if k not in ROUTING_FIELDS]
        pairs = [f"{k}={fields[k]}" for k in ordered if fields[k] is not None]
        return f" [{' '.join(pairs)}]" if pairs else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.RESET)
        line = (
            f"[{self.formatTime(record, '%H:%M:%S')}] "
            f"{color}{record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}{self._context(record)}"
        )
        if record.exc_info and record.exc_info[1]:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    env: Optional[str] = None,
    level: Optional[int] = None,
) -> logging.Handler:
    """
    Install a single handler on the root logger.

    Args:
        env: "production" for JSON output. Defaults to MODELMESH_ENV,
             then "development".
        level: Root level. Defaults to MODELMESH_LOG_LEVEL, then INFO.

    Returns the installed handler.
    """
    env = (env or os.environ.get("MODELMESH_ENV", "development")).lower().strip()
    if level is None:
        level_name = os.environ.get("MODELMESH_LOG_LEVEL", "INFO").upper().strip()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    if env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(DevFormatter())
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler
