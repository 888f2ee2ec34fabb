"""
Module: ledger_kernel.selectors.voucher_selector
Responsibility: Read-only voucher and statement queries.

Architecture position: Kernel > Selectors.

Queries:
    - by id, transaction type, status, statement reference, liquidation parent
    - unbilled billings of a project or customer (statement eligibility)
    - statements, ledger postings, and the allocations applied to a billing
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.ledger import LedgerPosting, Statement
from ledger_kernel.domain.voucher import (
    TransactionType,
    Voucher,
    VoucherStatus,
    normalize_status,
)
from ledger_kernel.models.ledger_posting import LedgerPostingModel
from ledger_kernel.models.statement import StatementModel
from ledger_kernel.models.voucher import CollectionAllocationModel, VoucherModel


def _uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class VoucherSelector:
    """
    Read side for vouchers, statements and ledger postings.

    Uses the caller's session and never adds, flushes or commits.  Returns
    frozen DTOs, never ORM rows.
    """

    def __init__(self, session: Session):
        self.session = session

    def _vouchers(self, stmt) -> list[Voucher]:
        stmt = stmt.order_by(VoucherModel.created_at, VoucherModel.voucher_number)
        return [Voucher.from_model(m) for m in self.session.execute(stmt).scalars()]

    def get(self, voucher_id: UUID | str) -> Voucher | None:
        key = _uuid(voucher_id)
        if key is None:
            return None
        model = self.session.get(VoucherModel, key)
        return Voucher.from_model(model) if model is not None else None

    def get_by_number(self, voucher_number: str) -> Voucher | None:
        model = self.session.execute(
            select(VoucherModel).where(VoucherModel.voucher_number == voucher_number)
        ).scalar_one_or_none()
        return Voucher.from_model(model) if model is not None else None

    def by_transaction_type(
        self,
        transaction_type: TransactionType | str,
        status: VoucherStatus | str | None = None,
    ) -> list[Voucher]:
        stmt = select(VoucherModel).where(
            VoucherModel.transaction_type == TransactionType(transaction_type).value
        )
        if status is not None:
            stmt = stmt.where(VoucherModel.status == normalize_status(status).value)
        return self._vouchers(stmt)

    def by_status(self, status: VoucherStatus | str) -> list[Voucher]:
        """Vouchers in ``status``; legacy labels such as "Approved" are accepted."""
        return self._vouchers(
            select(VoucherModel).where(VoucherModel.status == normalize_status(status).value)
        )

    def by_statement_reference(self, statement_reference: str) -> list[Voucher]:
        return self._vouchers(
            select(VoucherModel).where(
                VoucherModel.statement_reference == statement_reference
            )
        )

    def by_parent(self, parent_voucher_id: UUID | str) -> list[Voucher]:
        """Expense vouchers liquidating the given budget request / cash advance."""
        key = _uuid(parent_voucher_id)
        if key is None:
            return []
        return self._vouchers(
            select(VoucherModel).where(VoucherModel.parent_voucher_id == key)
        )

    def unbilled_billings(
        self,
        project_number: str | None = None,
        customer_id: str | None = None,
    ) -> list[Voucher]:
        """
        Billings eligible for a new statement: Draft, no statement reference.

        Filtered by project and/or customer when given.
        """
        stmt = (
            select(VoucherModel)
            .where(VoucherModel.transaction_type == TransactionType.BILLING.value)
            .where(VoucherModel.status == VoucherStatus.DRAFT.value)
            .where(VoucherModel.statement_reference.is_(None))
        )
        if project_number is not None:
            stmt = stmt.where(VoucherModel.project_number == project_number)
        if customer_id is not None:
            stmt = stmt.where(VoucherModel.customer_id == customer_id)
        return self._vouchers(stmt)

    def allocated_total(self, billing_id: UUID | str) -> Decimal:
        """Sum of applied collection allocations against a billing."""
        key = _uuid(billing_id)
        if key is None:
            return Decimal("0")
        total = self.session.execute(
            select(func.coalesce(func.sum(CollectionAllocationModel.amount), 0)).where(
                CollectionAllocationModel.billing_id == key
            )
        ).scalar_one()
        return Decimal(str(total))

    def get_statement(self, statement_reference: str) -> Statement | None:
        model = self.session.execute(
            select(StatementModel).where(
                StatementModel.statement_reference == statement_reference
            )
        ).scalar_one_or_none()
        return Statement.from_model(model) if model is not None else None

    def ledger_postings(
        self,
        source_type: str | None = None,
        source_references: Sequence[str] | None = None,
    ) -> list[LedgerPosting]:
        stmt = select(LedgerPostingModel)
        if source_type is not None:
            stmt = stmt.where(LedgerPostingModel.source_type == source_type)
        if source_references is not None:
            stmt = stmt.where(LedgerPostingModel.source_reference.in_(list(source_references)))
        stmt = stmt.order_by(LedgerPostingModel.posted_at)
        return [LedgerPosting.from_model(m) for m in self.session.execute(stmt).scalars()]
