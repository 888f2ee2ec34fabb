"""Kernel services: versioned persistence, numbering and ledger posting."""

from ledger_kernel.services.ledger_poster import LedgerPoster
from ledger_kernel.services.sequence_service import NumberingService, SequenceCounter
from ledger_kernel.services.voucher_store import VoucherStore

__all__ = [
    "LedgerPoster",
    "NumberingService",
    "SequenceCounter",
    "VoucherStore",
]
