"""
Structured JSON Lines logging for the YNAB CLI.

Each log entry is a single JSON object carrying:
- Timestamp (ISO 8601 UTC)
- Log level
- Session ID for correlating the attempts of one CLI invocation
- Event type for filtering
- Module name
- Human-readable message
- Extra structured data

Logs go to stderr so that command output on stdout stays parseable
(``ynab transactions --json | jq``).

Example log entry:
    {"ts": "2024-01-15T10:30:00Z", "level": "WARNING", "session_id": "abc123",
     "event": "api_server_error", "module": "executor",
     "msg": "Server error response received; backing off",
     "extra": {"path": "/budgets", "status": 503, "attempt": 1}}
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class LogSettings:
    """
    Configuration for logger initialization.

    Attributes:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
        session_id: Identifier included in every entry.
        log_file: Optional path to log file (None for stderr only).
        jsonl: If True, use JSON Lines format; otherwise plain text.
    """
    level: str
    session_id: str
    log_file: Path | None
    jsonl: bool


class JsonLineFormatter(logging.Formatter):
    """Format each record as one JSON object per line."""

    def __init__(self, session_id: str):
        super().__init__()
        self._session_id = session_id

    def format(self, record: logging.LogRecord) -> str:
        event = getattr(record, "event", "log")
        extra = getattr(record, "extra", {})
        if not isinstance(extra, dict):
            extra = {"value": extra}

        payload = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "session_id": self._session_id,
            "event": event,
            "module": record.module,
            "msg": record.getMessage(),
            "extra": extra,
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def build_logger(settings: LogSettings) -> logging.Logger:
    """
    Create the logger for one CLI invocation.

    The logger is isolated (non-propagating) and writes to stderr, plus
    ``settings.log_file`` when given.
    """
    logger = logging.getLogger(f"ynabcli.{settings.session_id}")
    logger.setLevel(settings.level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = JsonLineFormatter(settings.session_id) if settings.jsonl else None

    stream_handler = logging.StreamHandler(sys.stderr)
    if formatter:
        stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        if formatter:
            file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    message: str,
    *,
    exc_info: logging._ExcInfoType | None = None,
    **extra: Any,
) -> None:
    """
    Log a structured event with typed metadata.

    Args:
        logger: Logger instance to use.
        level: Log level (logging.DEBUG, INFO, WARNING, ERROR).
        event: Event type identifier (e.g., "http_request", "api_rate_limited").
        message: Human-readable log message.
        exc_info: Optional exception info for error logging.
        **extra: Additional key-value pairs to include in log entry.

    Example:
        >>> log_event(logger, logging.WARNING, "api_rate_limited",
        ...           "Rate limit response received", path="/budgets", wait_s=5)
    """
    logger.log(level, message, extra={"event": event, "extra": extra}, exc_info=exc_info)
