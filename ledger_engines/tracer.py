"""
ledger_engines.tracer -- one LEDGER_ENGINE_TRACE line per planner call.

Every planner in this package is wrapped with ``@traced_engine``.  The
wrapper logs, at DEBUG under ``ledger_kernel.engines.tracer``:

    engine_name, engine_version   which planner ran
    input_fingerprint             16 hex chars over the named arguments
    outcome                       "ok", or "error" with ``error_code``
    duration_ms

The fingerprint lets two runs be compared without logging voucher
contents: planning the same statement reference twice gives the same
fingerprint.  Arguments are bound against the planner's signature, so a
reference passed positionally fingerprints the same as one passed by
keyword, and defaults count.

The wrapper never swallows an engine error; it logs the refusal and
re-raises it unchanged.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any

_logger = logging.getLogger("ledger_kernel.engines.tracer")

TRACE_MESSAGE = "LEDGER_ENGINE_TRACE"


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return _canonical(value.value)
    if is_dataclass(value) and not isinstance(value, type):
        value = {f.name: getattr(value, f.name) for f in fields(value)}
    if isinstance(value, Mapping):
        pairs = sorted((str(k), _canonical(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(map(_canonical, value)) + "]"
    if isinstance(value, (set, frozenset)):
        return "[" + ",".join(sorted(map(_canonical, value))) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """SHA-256 prefix over ``name=value`` for each named argument; absent means null."""
    canonical = "|".join(f"{name}={_canonical(arguments.get(name))}" for name in fingerprint_fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def _bound_arguments(signature: inspect.Signature, args: tuple, kwargs: dict) -> dict[str, Any]:
    try:
        bound = signature.bind(*args, **kwargs)
    except TypeError:
        # Let the call itself raise the argument error.
        return dict(kwargs)
    bound.apply_defaults()
    return dict(bound.arguments)


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """
    Decorate a planner so each call emits a trace line.

    ``fingerprint_fields`` names the parameters hashed into
    ``input_fingerprint``; with none named the fingerprint is empty.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                fingerprint = compute_input_fingerprint(
                    fingerprint_fields, _bound_arguments(signature, args, kwargs)
                )
            trace: dict[str, Any] = {
                "trace_type": TRACE_MESSAGE,
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "function": func.__qualname__,
            }

            started = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                trace["outcome"] = "error"
                trace["error_code"] = getattr(exc, "code", type(exc).__name__)
                raise
            else:
                trace["outcome"] = "ok"
                return result
            finally:
                trace["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
                _logger.debug(TRACE_MESSAGE, extra=trace)

        return wrapper

    return decorator
