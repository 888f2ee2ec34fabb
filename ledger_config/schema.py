"""
Ledger engine configuration schema.

Frozen dataclasses the YAML file is parsed into.  ``EngineConfig`` is the
sole runtime artifact returned by ``ledger_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

DEFAULT_PREFIXES: Mapping[str, str] = MappingProxyType(
    {
        "expense": "EXP",
        "budget_request": "BR",
        "cash_advance": "CA",
        "collection": "COL",
        "billing": "INV",
        "adjustment": "ADJ",
        "reimbursement": "RMB",
    }
)


@dataclass(frozen=True)
class NumberingConfig:
    """Voucher number prefixes and statement reference format."""

    prefixes: Mapping[str, str] = field(default_factory=lambda: DEFAULT_PREFIXES)
    statement_prefix: str = "SOA"
    sequence_width: int = 3


@dataclass(frozen=True)
class ReconciliationConfig:
    paid_tolerance: Decimal = Decimal("0.01")


@dataclass(frozen=True)
class EngineConfig:
    """Validated, frozen engine configuration."""

    approval_authority: Mapping[str, tuple[str, ...]]
    administrative_roles: tuple[str, ...]
    approval_chains: Mapping[str, tuple[str, ...]]
    numbering: NumberingConfig
    reconciliation: ReconciliationConfig
    default_currency: str
    checksum: str = ""
    source: str = ""

    def chain_for(self, transaction_type: str) -> tuple[str, ...]:
        """Sequential approval roles for a type (empty when not configured)."""
        key = getattr(transaction_type, "value", transaction_type)
        return self.approval_chains.get(key, ())
