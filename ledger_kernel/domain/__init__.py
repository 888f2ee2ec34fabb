"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from ledger_kernel.domain.authority import ApprovalAuthority, RoleApprovalAuthority
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from ledger_kernel.domain.voucher import (
    Actor,
    Approver,
    BillingDetails,
    BillingStatus,
    CollectionDetails,
    HistoryEntry,
    LineItem,
    LinkedBilling,
    LiquidationDetails,
    TransactionType,
    Voucher,
    VoucherPayload,
    VoucherStatus,
    build_payload,
    normalize_status,
)
from ledger_kernel.domain.workflow import VOUCHER_WORKFLOW, Transition, Workflow

__all__ = [
    "Actor",
    "ApprovalAuthority",
    "Approver",
    "BillingDetails",
    "BillingStatus",
    "Clock",
    "CollectionDetails",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "HistoryEntry",
    "LineItem",
    "LinkedBilling",
    "LiquidationDetails",
    "RoleApprovalAuthority",
    "SystemClock",
    "TransactionType",
    "Transition",
    "VOUCHER_WORKFLOW",
    "Voucher",
    "VoucherPayload",
    "VoucherStatus",
    "Workflow",
    "build_payload",
    "normalize_status",
]
