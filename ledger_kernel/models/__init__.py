"""ORM models for the voucher ledger."""

from ledger_kernel.models.ledger_posting import LedgerPostingModel, LedgerSourceType
from ledger_kernel.models.statement import StatementModel, StatementStatus
from ledger_kernel.models.voucher import CollectionAllocationModel, VoucherModel

__all__ = [
    "CollectionAllocationModel",
    "LedgerPostingModel",
    "LedgerSourceType",
    "StatementModel",
    "StatementStatus",
    "VoucherModel",
]
