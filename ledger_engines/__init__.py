"""
Module: ledger_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    engines.  This is the canonical import surface for ledger_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel/domain and ledger_kernel.exceptions.
    MUST NOT import ledger_services.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``; the caller passes
      ``now`` explicitly.
    - Decimal-only arithmetic: all monetary amounts use ``Decimal``.
    - Determinism: identical inputs always produce identical outputs.
"""

from ledger_engines.approval import (
    TransitionOutcome,
    apply_transition,
    authorize,
    find_transition,
    next_chain_role,
)
from ledger_engines.liquidation import (
    ExpenseEntry,
    LiquidationSummary,
    SettlementPlan,
    plan_liquidation,
    plan_settlement,
    summarize,
    validate_parent,
)
from ledger_engines.reconciliation import (
    AllocationLine,
    AllocationPlan,
    FinalizePlan,
    StatementPlan,
    billing_status_after,
    is_statement_eligible,
    plan_allocation,
    plan_finalize,
    plan_statement,
)

__all__ = [
    "AllocationLine",
    "AllocationPlan",
    "ExpenseEntry",
    "FinalizePlan",
    "LiquidationSummary",
    "SettlementPlan",
    "StatementPlan",
    "TransitionOutcome",
    "apply_transition",
    "authorize",
    "billing_status_after",
    "find_transition",
    "is_statement_eligible",
    "next_chain_role",
    "plan_allocation",
    "plan_finalize",
    "plan_liquidation",
    "plan_settlement",
    "plan_statement",
    "summarize",
    "validate_parent",
]
