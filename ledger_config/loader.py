"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads the engine YAML file and parses it into the frozen
``ledger_config.schema`` dataclasses.  The single public entry point for
runtime config is ``ledger_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with a descriptive message; no silent
  defaults for malformed values (absent optional sections fall back to
  schema defaults).
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from ledger_config.schema import (
    DEFAULT_PREFIXES,
    EngineConfig,
    NumberingConfig,
    ReconciliationConfig,
)

TRANSACTION_TYPES = frozenset(DEFAULT_PREFIXES)
WILDCARD = "*"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization (sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _string_list(value: Any, where: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ValueError(f"{where} must be a list of non-empty strings, got {value!r}")
    return tuple(value)


def _check_types(types: tuple[str, ...], where: str) -> None:
    unknown = [t for t in types if t != WILDCARD and t not in TRANSACTION_TYPES]
    if unknown:
        raise ValueError(f"{where}: unknown transaction type(s) {unknown}")


def parse_approval_authority(data: Any) -> MappingProxyType:
    if not isinstance(data, dict) or not data:
        raise ValueError("approval_authority must be a non-empty mapping of role -> types")
    table = {}
    for role, types in data.items():
        parsed = _string_list(types, f"approval_authority.{role}")
        _check_types(parsed, f"approval_authority.{role}")
        table[str(role)] = parsed
    return MappingProxyType(table)


def parse_approval_chains(data: Any) -> MappingProxyType:
    if data is None:
        return MappingProxyType({})
    if not isinstance(data, dict):
        raise ValueError("approval_chains must be a mapping of transaction type -> roles")
    chains = {}
    for transaction_type, roles in data.items():
        _check_types((transaction_type,), "approval_chains")
        if transaction_type == WILDCARD:
            raise ValueError("approval_chains does not accept '*'")
        parsed = _string_list(roles, f"approval_chains.{transaction_type}")
        if not parsed:
            raise ValueError(f"approval_chains.{transaction_type} must not be empty")
        chains[transaction_type] = parsed
    return MappingProxyType(chains)


def parse_numbering(data: Any) -> NumberingConfig:
    if data is None:
        return NumberingConfig()
    if not isinstance(data, dict):
        raise ValueError("numbering must be a mapping")

    prefixes = dict(DEFAULT_PREFIXES)
    overrides = data.get("prefixes") or {}
    if not isinstance(overrides, dict):
        raise ValueError("numbering.prefixes must be a mapping")
    _check_types(tuple(overrides), "numbering.prefixes")
    for kind, prefix in overrides.items():
        if not isinstance(prefix, str) or not prefix.strip():
            raise ValueError(f"numbering.prefixes.{kind} must be a non-empty string")
        prefixes[kind] = prefix.strip()

    width = data.get("sequence_width", 3)
    if not isinstance(width, int) or isinstance(width, bool) or width < 1:
        raise ValueError(f"numbering.sequence_width must be a positive integer, got {width!r}")

    statement_prefix = data.get("statement_prefix", "SOA")
    if not isinstance(statement_prefix, str) or not statement_prefix.strip():
        raise ValueError("numbering.statement_prefix must be a non-empty string")

    return NumberingConfig(
        prefixes=MappingProxyType(prefixes),
        statement_prefix=statement_prefix.strip(),
        sequence_width=width,
    )


def parse_reconciliation(data: Any) -> ReconciliationConfig:
    if data is None:
        return ReconciliationConfig()
    if not isinstance(data, dict):
        raise ValueError("reconciliation must be a mapping")
    raw = data.get("paid_tolerance", "0.01")
    try:
        tolerance = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"reconciliation.paid_tolerance is not a number: {raw!r}") from None
    if not tolerance.is_finite() or tolerance < 0:
        raise ValueError(f"reconciliation.paid_tolerance must be >= 0, got {raw!r}")
    return ReconciliationConfig(paid_tolerance=tolerance)


def parse_config(data: dict[str, Any], source: str = "") -> EngineConfig:
    """
    Parse a raw config mapping into an EngineConfig.

    Raises:
        ValueError: on any invalid section.
    """
    currency = data.get("default_currency", "PHP")
    if not isinstance(currency, str) or len(currency.strip()) != 3:
        raise ValueError(f"default_currency must be a 3-letter ISO 4217 code, got {currency!r}")

    return EngineConfig(
        approval_authority=parse_approval_authority(data.get("approval_authority")),
        administrative_roles=_string_list(
            data.get("administrative_roles", []), "administrative_roles"
        ),
        approval_chains=parse_approval_chains(data.get("approval_chains")),
        numbering=parse_numbering(data.get("numbering")),
        reconciliation=parse_reconciliation(data.get("reconciliation")),
        default_currency=currency.strip().upper(),
        checksum=compute_checksum(data),
        source=source,
    )


def load_config(path: Path) -> EngineConfig:
    """Load and parse one YAML file."""
    return parse_config(load_yaml_file(path), source=str(path))
