"""Logging configuration for the progress engine.

WHY TWO FORMATTERS
--------------------
  _ContainerFormatter: human-readable, single-line, for local dev.
    Bound learner/content/attempt ids are appended as ``key=value``
    pairs so a grep for one learner finds every line about them.

  _JsonFormatter: machine-parseable, for production.
    Log aggregation systems parse JSON natively, so the same ids become
    top-level fields you can filter on:

      learner_id == "abc123" AND level == "WARNING"

    Set LOG_JSON=true in production to switch to JSON output.

The ids come from ``progress_engine.core.log_context``: the controllers
bind them with ``log_context(...)`` and the LearnerContextFilter installed
on the handler copies them onto each record.
"""

from __future__ import annotations

import json
import logging
import sys

from progress_engine.core.log_context import LearnerContextFilter

# Fields that log_context() may inject into LogRecords.
_CONTEXT_FIELDS = ("learner_id", "content_id", "attempt_id")


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout.

    - Always: ISO-8601 timestamp, level, logger name, message
    - Bound context ids appended as key=value when present
    - WARNING+: appends [filename:lineno] so you can locate the guard clause
    - ERROR/CRITICAL: stack trace included when exc_info is present
    """

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        ms = int(record.msecs)
        # Insert .NNN before the timezone offset (last 5 chars: +0000)
        return f"{base[:-5]}.{ms:03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        line = super().format(record)

        context = " ".join(
            f"{key}={getattr(record, key)}"
            for key in _CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        if not context:
            return line
        # Keep the traceback (if any) below the context suffix.
        head, sep, tail = line.partition("\n")
        return f"{head}  {context}{sep}{tail}"


class _JsonFormatter(logging.Formatter):
    """JSON formatter for machine-parseable log output (one object per line)."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure root logger for container environments.

    - Sends everything to stdout
    - Applies the appropriate formatter based on json_format
    - Quiets noisy third-party loggers

    Args:
        level_name: Log level string (debug/info/warning/error)
        json_format: If True, emit JSON lines. If False, human-readable.
                     Controlled by LOG_JSON env var in Settings.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())
    handler.addFilter(LearnerContextFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # SQLAlchemy logs every statement at INFO when echo is on
    for name in ("sqlalchemy.engine", "sqlalchemy.pool", "asyncio"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
