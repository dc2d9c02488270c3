"""
Structured Logger
==================

Event-style structured logging for routing decisions and pipeline steps.

    log = get_logger(__name__)
    log.info("provider_selected", provider="arcium", score=155.0)

Design:
  - One event name per log call; details travel as keyword fields
  - Fields bound with ``bind()`` or scoped with ``log_context()`` are
    attached to every record (a pipeline run tags all of its records)
  - JSON lines in production, a compact human format in development
  - Handlers installed by ``setup_logging`` are tagged so that repeated
    calls replace only them and leave the host application's handlers alone
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# ── Scoped Context ─────────────────────────────────────────────────

_log_context: ContextVar[dict[str, Any]] = ContextVar("privacykit_log_context", default={})

@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every record emitted inside the block (task-local)."""
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)

def current_context() -> dict[str, Any]:
    return {k: v for k, v in _log_context.get().items() if v is not None}

# ── Formatter ──────────────────────────────────────────────────────

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}

_JSON_SAFE = (str, int, float, bool, type(None))

def _fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: val if isinstance(val, _JSON_SAFE) else str(val)
        for key, val in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }

class StructuredFormatter(logging.Formatter):
    """Renders a record as one JSON object or one human-readable line."""

    def __init__(self, *, json_output: bool = True, include_traceback: bool = True):
        super().__init__()
        self._json = json_output
        self._include_tb = include_traceback
        self._pid = os.getpid()

    def format(self, record: logging.LogRecord) -> str:
        ctx = current_context()
        fields = _fields(record)
        if self._json:
            return self._format_json(record, ctx, fields)
        return self._format_human(record, ctx, fields)

    def _format_json(
        self, record: logging.LogRecord, ctx: dict[str, Any], fields: dict[str, Any]
    ) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "pid": self._pid,
        }
        if ctx:
            entry["context"] = ctx
        if fields:
            entry["fields"] = fields
        if record.exc_info and record.exc_info[1] is not None:
            exc_type, exc, tb = record.exc_info
            entry["error"] = {
                "type": exc_type.__name__ if exc_type else type(exc).__name__,
                "message": str(exc),
            }
            if self._include_tb and tb is not None:
                entry["error"]["traceback"] = traceback.format_exception(exc_type, exc, tb)
        return json.dumps(entry, default=str, ensure_ascii=False)

    def _format_human(
        self, record: logging.LogRecord, ctx: dict[str, Any], fields: dict[str, Any]
    ) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        scope = str(ctx.get("pipeline_id", "-"))[:12]
        line = f"{ts} {record.levelname:<7} [{scope}] {record.name}: {record.getMessage()}"
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info)).rstrip()
        return line

# ── Logger ─────────────────────────────────────────────────────────

class StructuredLogger:
    """
    Event-style facade over a stdlib logger.

    Usage:
        log = StructuredLogger("privacykit.infra.runtime.router")
        log.warning("estimate_failed", provider="noir", error="timeout")
        step_log = log.bind(pipeline_id="3f2a", index=1)
    """

    __slots__ = ("_bound", "_logger")

    def __init__(self, name: str, bound: dict[str, Any] | None = None):
        self._logger = logging.getLogger(name)
        self._bound = bound or {}

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **fields: Any) -> StructuredLogger:
        """A logger for the same name that adds ``fields`` to every record."""
        return StructuredLogger(self.name, {**self._bound, **fields})

    def _log(
        self,
        level: int,
        event: str,
        fields: dict[str, Any],
        exc: BaseException | None = None,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            event,
            extra={**self._bound, **fields},
            exc_info=exc,
            stacklevel=3,
        )

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, fields)

    def error(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._log(logging.ERROR, event, fields, exc)

    def exception(self, event: str, **fields: Any) -> None:
        """Log at ERROR with the exception currently being handled."""
        self._log(logging.ERROR, event, fields, sys.exc_info()[1])

def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)

# ── Setup ──────────────────────────────────────────────────────────

LOG_FILE = "privacykit.log"

def _is_ours(handler: logging.Handler) -> bool:
    return getattr(handler, "_privacykit", False)

def setup_logging(
    *,
    level: str = "INFO",
    json_output: bool = False,
    log_dir: str | None = None,
    logger_name: str = "privacykit",
) -> logging.Logger:
    """
    Install console (and optionally rotating file) handlers.

    Handlers are attached to the ``privacykit`` logger rather than the
    root logger. Calling again replaces the handlers a previous call
    installed.

    Args:
        level: Log level for the package logger
        json_output: JSON lines instead of the human-readable format
        log_dir: Directory for a rotating ``privacykit.log``; None = console only
        logger_name: Logger to configure
    """
    target = logging.getLogger(logger_name)
    target.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in [h for h in target.handlers if _is_ours(h)]:
        target.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    handlers[0].setFormatter(StructuredFormatter(json_output=json_output))

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path / LOG_FILE,
            maxBytes=10 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter(json_output=True))
        handlers.append(file_handler)

    for handler in handlers:
        handler._privacykit = True  # type: ignore[attr-defined]
        target.addHandler(handler)
    target.propagate = False
    return target
