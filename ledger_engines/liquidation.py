"""
ledger_engines.liquidation -- Pure liquidation validation and summaries.

Responsibility:
    Validate a liquidation parent and the expense entries spent against it,
    derive the liquidation summary (total liquidated, over-liquidation,
    liquidation status) from the parent and its children, and plan the
    voucher that settles the difference.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - The parent is a Posted budget_request or cash_advance.
    - Every entry is in the parent's currency (defaulting to it).
    - ``over_liquidated`` is derived, never stored: total of Posted
      children minus the parent amount, and 0 until a child is Posted.
    - At most one live settlement per parent: a return-of-funds
      collection for under-spend or a reimbursement for over-spend.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID

from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.voucher import (
    LiquidationStatus,
    TransactionType,
    Voucher,
    VoucherStatus,
    validate_amount,
)
from ledger_kernel.exceptions import IneligibleItemError, InvalidParentError, ValidationError

LIQUIDATION_PARENT_TYPES = frozenset(
    {TransactionType.BUDGET_REQUEST, TransactionType.CASH_ADVANCE}
)

SETTLEMENT_TYPES = frozenset({TransactionType.COLLECTION, TransactionType.REIMBURSEMENT})

SETTLEMENT_CATEGORY = "Liquidation"
RETURN_OF_FUNDS = "Return of Funds"
REIMBURSEMENT = "Reimbursement"

_OPEN_STATUSES = (VoucherStatus.DRAFT, VoucherStatus.PENDING)
_DEAD_STATUSES = (VoucherStatus.CANCELLED, VoucherStatus.REJECTED)


@dataclass(frozen=True)
class ExpenseEntry:
    """One actual expense spent against a budget request or cash advance."""

    amount: Decimal
    purpose: str
    vendor_name: str | None = None
    currency: str | None = None
    expense_category: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class LiquidationSummary:
    parent_id: UUID
    parent_amount: Decimal
    total_liquidated: Decimal
    over_liquidated: Decimal
    posted_count: int
    pending_count: int
    currency: str
    settlement_id: UUID | None = None
    settlement_status: VoucherStatus | None = None

    @property
    def is_over_liquidated(self) -> bool:
        return self.over_liquidated > 0

    @property
    def unspent(self) -> Decimal:
        """Parent amount not covered by Posted expenses (negative on over-spend)."""
        return self.parent_amount - self.total_liquidated

    @property
    def liquidation_status(self) -> LiquidationStatus:
        if self.posted_count == 0 and self.pending_count == 0:
            return LiquidationStatus.NO
        if self.pending_count:
            return LiquidationStatus.PENDING
        if self.settlement_id is not None:
            if self.settlement_status == VoucherStatus.POSTED:
                return LiquidationStatus.YES
            return LiquidationStatus.PENDING
        if self.unspent == 0:
            return LiquidationStatus.YES
        return LiquidationStatus.PENDING


@dataclass(frozen=True)
class SettlementPlan:
    """The voucher that closes a liquidation."""

    parent_id: UUID
    transaction_type: TransactionType
    amount: Decimal
    currency: str
    sub_category: str
    purpose: str
    expense_category: str = SETTLEMENT_CATEGORY


def validate_parent(parent: Voucher | None, parent_id: UUID | str) -> Voucher:
    """
    Raises:
        InvalidParentError: Missing, wrong type, or not Posted.
    """
    if parent is None:
        raise InvalidParentError(str(parent_id), "parent voucher does not exist")
    if parent.transaction_type not in LIQUIDATION_PARENT_TYPES:
        raise InvalidParentError(
            str(parent_id),
            f"parent is a {parent.transaction_type.value}, "
            "expected budget_request or cash_advance",
        )
    if parent.status != VoucherStatus.POSTED:
        raise InvalidParentError(
            str(parent_id), f"parent is {parent.status.value}, expected Posted"
        )
    return parent


@traced_engine("liquidation", "1.0")
def plan_liquidation(parent: Voucher, entries: Sequence[ExpenseEntry]) -> tuple[ExpenseEntry, ...]:
    """
    Normalize the entries of a liquidation against ``parent``.

    Returns:
        Entries with amounts as Decimal and currency resolved to the parent's.

    Raises:
        ValidationError: No entries, a bad amount, a blank purpose, or a
            currency that differs from the parent's.
    """
    if not entries:
        raise ValidationError("A liquidation needs at least one expense entry", field="expense_entries")

    resolved = []
    for index, entry in enumerate(entries):
        amount = validate_amount(entry.amount, "amount")
        if not (entry.purpose and entry.purpose.strip()):
            raise ValidationError(f"expense_entries[{index}] needs a purpose", field="purpose")
        currency = (
            CurrencyRegistry.validate(entry.currency) if entry.currency else parent.currency
        )
        if currency != parent.currency:
            raise ValidationError(
                f"expense_entries[{index}] currency {currency} does not match "
                f"parent currency {parent.currency}",
                field="currency",
            )
        resolved.append(replace(entry, amount=amount, currency=currency))
    return tuple(resolved)


def settlements_of(parent: Voucher, children: Sequence[Voucher]) -> list[Voucher]:
    """Live (not Cancelled or Rejected) settlement vouchers of ``parent``."""
    return [
        c
        for c in children
        if c.transaction_type in SETTLEMENT_TYPES
        and c.parent_voucher_id == parent.id
        and c.status not in _DEAD_STATUSES
    ]


def summarize(parent: Voucher, children: Sequence[Voucher]) -> LiquidationSummary:
    """
    Derive the liquidation summary of ``parent`` from its children.

    Only Posted expenses count towards ``total_liquidated``;
    ``over_liquidated`` stays 0 until the first of them is Posted.
    """
    expenses = [
        c
        for c in children
        if c.transaction_type == TransactionType.EXPENSE and c.parent_voucher_id == parent.id
    ]
    posted = [c for c in expenses if c.status == VoucherStatus.POSTED]
    pending = [c for c in expenses if c.status in _OPEN_STATUSES]
    total = sum((c.amount for c in posted), Decimal("0"))
    settlement = next(iter(settlements_of(parent, children)), None)
    return LiquidationSummary(
        parent_id=parent.id,
        parent_amount=parent.amount,
        total_liquidated=total,
        over_liquidated=total - parent.amount if posted else Decimal("0"),
        posted_count=len(posted),
        pending_count=len(pending),
        currency=parent.currency,
        settlement_id=settlement.id if settlement else None,
        settlement_status=settlement.status if settlement else None,
    )


@traced_engine("liquidation.settlement", "1.0")
def plan_settlement(parent: Voucher, children: Sequence[Voucher]) -> SettlementPlan:
    """
    Plan the voucher that settles the difference between ``parent`` and its
    Posted expenses: a return-of-funds collection for the unspent amount,
    or a reimbursement for the overspend.

    Raises:
        InvalidParentError: Parent missing, not Posted, or wrong type.
        IneligibleItemError: No Posted expense, expenses still open, a
            settlement already exists, or nothing is left to settle.
    """
    validate_parent(parent, parent.id)
    summary = summarize(parent, children)
    ids = [str(parent.id)]
    if summary.posted_count == 0:
        raise IneligibleItemError(ids, "no Posted expense to settle against")
    if summary.pending_count:
        raise IneligibleItemError(
            ids, f"{summary.pending_count} expense(s) still awaiting approval"
        )
    if summary.settlement_id is not None:
        raise IneligibleItemError(
            ids, f"already settled by voucher {summary.settlement_id}"
        )

    unspent = summary.unspent
    if unspent == 0:
        raise IneligibleItemError(ids, "liquidation is balanced, nothing to settle")
    if unspent > 0:
        return SettlementPlan(
            parent_id=parent.id,
            transaction_type=TransactionType.COLLECTION,
            amount=unspent,
            currency=parent.currency,
            sub_category=RETURN_OF_FUNDS,
            purpose=f"Return of unspent funds - {parent.voucher_number}",
        )
    return SettlementPlan(
        parent_id=parent.id,
        transaction_type=TransactionType.REIMBURSEMENT,
        amount=-unspent,
        currency=parent.currency,
        sub_category=REIMBURSEMENT,
        purpose=f"Reimbursement of overspend - {parent.voucher_number}",
    )
