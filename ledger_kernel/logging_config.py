"""
Module: ledger_kernel.logging_config
Responsibility: One JSON object per log line for every ledger operation,
    carrying the voucher/statement the line is about without each call
    site repeating it.
Architecture position: Kernel, no dependencies on other kernel modules.
    Every layer logs through ``get_logger``.

Each line has ``ts``, ``level``, ``logger`` and ``message``, then the bound
context (see ``CONTEXT_FIELDS``), then the ``extra`` dict of the call.  A
call's ``extra`` never overrides a bound context field.

Money stays exact: Decimal values are written as strings.  Enum members
are written as their value, so ``VoucherStatus.POSTED`` logs as "Posted".

Ledger errors are written as a nested ``error`` object (code, retryable
flag and the error's own attributes), so a failed allocation logs its
``billing_id``, ``requested`` and ``remaining`` as fields.

Payment details a caller passes in ``extra`` (bank account numbers, tax
ids) are masked down to their last four characters.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "SENSITIVE_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import dataclasses
import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

_LOGGER_PREFIX = "ledger_kernel"

LEVEL_ENV = "LEDGER_LOG_LEVEL"

CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "voucher_id",
    "voucher_number",
    "statement_reference",
    "trace_id",
)

SENSITIVE_FIELDS = frozenset(
    {"account_number", "bank_account", "card_number", "tin", "tax_id"}
)

_EMPTY: Mapping[str, str] = MappingProxyType({})


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class LogContext:
    """
    Fields attached to every line logged in the current thread or task.

    The whole context is a single immutable mapping in one ContextVar:
    binding swaps in a merged copy and restores the previous mapping on
    exit, so nested binds unwind correctly.
    """

    _current: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_context", default=_EMPTY)

    @staticmethod
    def _clean(fields: Mapping[str, Any]) -> dict[str, str]:
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        return {k: str(v) for k, v in fields.items() if v is not None}

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Update fields for the rest of the current context.  None values are skipped."""
        merged = dict(cls._current.get())
        merged.update(cls._clean(fields))
        cls._current.set(MappingProxyType(merged))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        current = cls._current.get()
        return {name: current[name] for name in CONTEXT_FIELDS if name in current}

    @classmethod
    def clear(cls) -> None:
        cls._current.set(_EMPTY)

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """
        Bind fields for the duration of a ``with`` block::

            with LogContext.bind(actor_id=actor.id, voucher_id=voucher.id):
                ...
        """
        return _Binding(cls._clean(fields))

    @classmethod
    def for_voucher(cls, voucher: Any) -> "_Binding":
        """Bind id, number and statement reference of a voucher snapshot."""
        return cls.bind(
            voucher_id=voucher.id,
            voucher_number=voucher.voucher_number,
            statement_reference=getattr(voucher, "statement_reference", None),
        )


class _Binding:

    def __init__(self, fields: dict[str, str]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        merged = dict(LogContext._current.get())
        merged.update(self._fields)
        self._token = LogContext._current.set(MappingProxyType(merged))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        LogContext._current.reset(self._token)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_jsonable(v) for v in value]
        return sorted(items, key=str) if isinstance(value, (set, frozenset)) else items
    return value


def _mask(value: Any) -> str:
    text = str(value)
    if len(text) <= 4:
        return "****"
    return "****" + text[-4:]


def _error_fields(exc: BaseException) -> dict[str, Any]:
    error: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        error["code"] = code
        error["retryable"] = bool(getattr(exc, "retryable", False))
    for key, value in vars(exc).items():
        if not key.startswith("_"):
            error[key] = _jsonable(value)
    return error


class StructuredFormatter(logging.Formatter):
    """Formats each record as a single JSON line."""

    def __init__(self, sensitive_fields: frozenset[str] = SENSITIVE_FIELDS):
        super().__init__()
        self.sensitive_fields = frozenset(sensitive_fields)

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key in _RECORD_ATTRIBUTES or key in line:
                continue
            line[key] = _mask(value) if key in self.sensitive_fields else _jsonable(value)

        if record.exc_info and record.exc_info[1] is not None:
            line["error"] = _error_fields(record.exc_info[1])
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=str)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the ledger_kernel namespace, e.g. ``ledger_kernel.services.workflow``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def _owned_handlers(root: logging.Logger) -> list[logging.Handler]:
    return [h for h in root.handlers if getattr(h, "_ledger_owned", False)]


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.environ.get(LEVEL_ENV, "INFO")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level {level!r}")
        return resolved
    return level


def configure_logging(
    *,
    level: int | str | None = None,
    stream: Any = None,
    handler: logging.Handler | None = None,
    sensitive_fields: frozenset[str] = SENSITIVE_FIELDS,
) -> logging.Handler:
    """
    Install the JSON handler on the ``ledger_kernel`` logger.

    Idempotent: if a handler installed by this function is already present
    it is returned unchanged.  Handlers attached by others (pytest's
    capture handlers, for instance) are left alone.  The level defaults to
    ``$LEDGER_LOG_LEVEL`` or INFO.
    """
    root = logging.getLogger(_LOGGER_PREFIX)
    existing = _owned_handlers(root)
    if existing:
        return existing[0]

    installed = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    installed.setFormatter(StructuredFormatter(sensitive_fields))
    installed._ledger_owned = True
    root.setLevel(_resolve_level(level))
    root.propagate = False
    root.addHandler(installed)
    return installed


def reset_logging() -> None:
    """Remove the handlers ``configure_logging`` installed.  Used by tests."""
    root = logging.getLogger(_LOGGER_PREFIX)
    for handler in _owned_handlers(root):
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)
    root.propagate = True
