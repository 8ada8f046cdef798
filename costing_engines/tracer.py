"""
Trace records for pure engine calls.

``@traced_engine`` wraps a planner so every call leaves one debug record
named ``COSTING_ENGINE_TRACE`` carrying the engine name and version, how
long the call took, and a short fingerprint of the keyword arguments listed
in ``fingerprint_fields``.  Two calls with equal inputs share a fingerprint,
which is what replay comparisons key on.

The wrapper only reads its arguments and logs; engines stay free of I/O.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from costing_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_MESSAGE = "COSTING_ENGINE_TRACE"

F = TypeVar("F", bound=Callable[..., Any])


def _plain(value: Any) -> Any:
    # json.dumps calls this for anything it cannot encode natively.
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {"__type__": type(value).__name__, **{
            f.name: getattr(value, f.name) for f in dataclasses.fields(value)
        }}
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    """First 16 hex chars of a SHA-256 over the named kwargs; absent ones hash as null."""
    selected = {name: kwargs.get(name) for name in fingerprint_fields}
    canonical = json.dumps(selected, sort_keys=True, default=_plain, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed = time.perf_counter() - started

            if _logger.isEnabledFor(logging.DEBUG):
                _logger.debug(
                    TRACE_MESSAGE,
                    extra={
                        "trace_type": TRACE_MESSAGE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": (
                            compute_input_fingerprint(fingerprint_fields, kwargs)
                            if fingerprint_fields else ""
                        ),
                        "duration_ms": round(elapsed * 1000, 2),
                        "function": func.__qualname__,
                    },
                )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
