"""
ledger_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines (ledger_engines/)
    with database sessions, the numbering service and the ledger poster.
    This is the only layer that holds sessions or reads the clock.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

        ledger_services/ -> ledger_engines/  (allowed)
        ledger_services/ -> ledger_kernel/   (allowed)
        ledger_engines/  -> ledger_services/ (FORBIDDEN)
        ledger_kernel/   -> ledger_services/ (FORBIDDEN)
"""

from ledger_kernel.logging_config import get_logger

logger = get_logger("services")

from ledger_services.retry import retry_on_conflict
from ledger_services.workflow_orchestrator import (
    AutoApproveResult,
    ExpenseEntry,
    FinalizeResult,
    LiquidationSummary,
    StatementResult,
    VoucherWorkflow,
    as_actor,
)

__all__ = [
    "AutoApproveResult",
    "ExpenseEntry",
    "FinalizeResult",
    "LiquidationSummary",
    "StatementResult",
    "VoucherWorkflow",
    "as_actor",
    "retry_on_conflict",
]
