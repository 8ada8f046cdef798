"""
Structured JSON logging for the costing packages.

Every record is rendered as one JSON object per line.  Run-scoped fields
(correlation id, run id, actor, and the order line being costed) are kept
in a single ContextVar so they follow the call stack across threads and
tasks without being passed around.

    with LogContext.bind(run_id=str(run.run_id), actor_id=str(actor_id)):
        logger.info("batch_run_started", extra={"start_date": "2024-01-01"})

    {"ts": "...", "level": "INFO", "logger": "costing_kernel.batch.runner",
     "message": "batch_run_started", "run_id": "...", "actor_id": "...",
     "start_date": "2024-01-01"}
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Mapping
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "costing_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "run_id",
    "actor_id",
    "order_id",
    "sku",
)

_context: ContextVar[Mapping[str, str]] = ContextVar("costing_log_context", default={})


def _merged(current: Mapping[str, str], updates: Mapping[str, Any]) -> dict[str, str]:
    merged = dict(current)
    for key, value in updates.items():
        if key in CONTEXT_FIELDS and value is not None:
            merged[key] = str(value)
    return merged


class LogContext:
    """Run-scoped log fields shared by every logger in the current context."""

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Update fields in place.  None values and unknown names are ignored."""
        _context.set(_merged(_context.get(), fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundContext":
        """Scope fields to a ``with`` block; the previous values come back on exit."""
        return _BoundContext(fields)


class _BoundContext:
    def __init__(self, fields: Mapping[str, Any]):
        self._fields = fields
        self._token: Token | None = None

    def __enter__(self) -> type[LogContext]:
        self._token = _context.set(_merged(_context.get(), self._fields))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        if self._token is not None:
            _context.reset(self._token)
            self._token = None


# LogRecord attributes that are never copied into the payload.
_RESERVED: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))

        return json.dumps(payload, default=_to_json, ensure_ascii=False)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # Typed costing errors carry their context as plain attributes.
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields[f"exc_{name}"] = value
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``costing_kernel.`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_config_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``costing_kernel`` logger once per process."""
    global _configured
    with _config_lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers and allow configure_logging() to run again.  Tests only."""
    global _configured
    with _config_lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
