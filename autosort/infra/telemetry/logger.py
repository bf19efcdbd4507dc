"""
Structured Logger
==================

Event-name-first structured logging for the orchestration layer:

    logger.info("engine_created", game="skyrimse", path=game_path)

Every record carries the active game and, inside a sort, the sort run id.
Records render as one JSON object per line (files, production) or as a
single readable line (console during development).

The sorting engine's own log output is routed through ``engine_log_callback``
so it lands in the same handlers under the ``autosort.engine`` logger.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# ── Log Context ────────────────────────────────────────────────────

_game: ContextVar[str | None] = ContextVar("log_game", default=None)
_sort_run: ContextVar[str | None] = ContextVar("log_sort_run", default=None)


def set_log_context(*, context_id: str | None = None, run_id: str | None = None) -> None:
    """Attach the active game and/or sort run id to subsequent records."""
    if context_id is not None:
        _game.set(context_id)
    if run_id is not None:
        _sort_run.set(run_id)


def clear_log_context() -> None:
    _game.set(None)
    _sort_run.set(None)


def current_log_context() -> dict[str, str]:
    pairs = (("context_id", _game.get()), ("run_id", _sort_run.get()))
    return {key: value for key, value in pairs if value is not None}


# ── Formatting ─────────────────────────────────────────────────────

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "taskName",
}
_PLAIN_TYPES = (str, int, float, bool, type(None))


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Structured fields passed as keyword arguments to the logger."""
    return {
        key: value if isinstance(value, _PLAIN_TYPES) else str(value)
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """JSON lines, or one human-readable line per record."""

    def __init__(self, *, json_output: bool = True, include_traceback: bool = True):
        super().__init__()
        self._json = json_output
        self._include_tb = include_traceback

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat()
        fields = record_fields(record)
        context = current_log_context()

        if not self._json:
            game = context.get("context_id", "-")
            data = " ".join(f"{k}={v}" for k, v in fields.items())
            line = f"{timestamp} {record.levelname:<7} [{game}] {record.name}: {record.getMessage()} {data}"
            if record.exc_info and self._include_tb:
                line += "\n" + "".join(traceback.format_exception(*record.exc_info))
            return line.rstrip()

        entry: dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
            "pid": record.process,
            "context": context,
        }
        if fields:
            entry["data"] = fields
        if record.exc_info and self._include_tb:
            exc_type, exc, tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc) if exc else None,
                "traceback": traceback.format_exception(exc_type, exc, tb) if tb else None,
            }
        return json.dumps(entry, default=str, ensure_ascii=False)


# ── Loggers ────────────────────────────────────────────────────────

class StructuredLogger:
    """
    Thin wrapper over a stdlib logger taking an event name plus fields.

    Field names must not collide with LogRecord attributes (``name``,
    ``message``, ``module``, ``args``, ``filename``...).
    """

    __slots__ = ("_logger",)

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._logger.name

    def log(self, level: int, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, event, exc_info=exc, extra=fields, stacklevel=3)

    def debug(self, event: str, **fields: Any) -> None:
        self.log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log(logging.WARNING, event, **fields)

    def error(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self.log(logging.ERROR, event, exc=exc, **fields)

    def bind(self, **fields: Any) -> BoundLogger:
        """Child logger that adds ``fields`` to every record."""
        return BoundLogger(self, fields)


class BoundLogger:
    __slots__ = ("_fields", "_parent")

    def __init__(self, parent: StructuredLogger, fields: dict[str, Any]):
        self._parent = parent
        self._fields = fields

    def log(self, level: int, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._parent.log(level, event, exc=exc, **{**self._fields, **fields})

    def debug(self, event: str, **fields: Any) -> None:
        self.log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log(logging.WARNING, event, **fields)

    def error(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self.log(logging.ERROR, event, exc=exc, **fields)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)


# ── Engine Log Bridge ──────────────────────────────────────────────

# Engine levels: 0 trace, 1 debug, 2 info, 3 warning, 4 error, 5 fatal
_ENGINE_LEVELS = (
    logging.DEBUG,
    logging.DEBUG,
    logging.INFO,
    logging.WARNING,
    logging.ERROR,
    logging.ERROR,
)


def engine_log_level(level: int) -> int:
    if 0 <= level < len(_ENGINE_LEVELS):
        return _ENGINE_LEVELS[level]
    return logging.INFO


def engine_log_callback(name: str = "autosort.engine"):
    """Callback handed to the native engine for its own log output."""
    log = get_logger(name)

    def _callback(level: int, message: str) -> None:
        log.log(engine_log_level(level), message)

    return _callback


# ── Setup ──────────────────────────────────────────────────────────

_initialized = False


def setup_logging(
    *,
    level: str = "INFO",
    json_output: bool | None = None,
    log_dir: str | Path | None = None,
) -> None:
    """
    Configure root handlers. Call once from the embedding host.

    Args:
        level: Root log level
        json_output: Console format; None picks JSON outside development
        log_dir: Adds a rotating JSON file ``autosort.log`` in this directory
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    if json_output is None:
        json_output = os.getenv("AUTOSORT_ENVIRONMENT", "development") != "development"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(StructuredFormatter(json_output=json_output))
    root.addHandler(console)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            path / "autosort.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        handler.setFormatter(StructuredFormatter(json_output=True))
        root.addHandler(handler)

    # engine output is chatty at debug level
    logging.getLogger("autosort.engine").setLevel(max(root.level, logging.INFO))
    logging.getLogger("asyncio").setLevel(logging.WARNING)
