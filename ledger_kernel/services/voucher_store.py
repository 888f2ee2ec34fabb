"""
VoucherStore -- versioned persistence for vouchers, statements and allocations.

Responsibility:
    The only code that writes ``VoucherModel`` / ``StatementModel`` /
    ``CollectionAllocationModel`` rows.  Converts between ORM rows and the
    frozen domain DTOs the engines work on.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes, never commits.

Invariants enforced:
    - Optimistic concurrency: ``save(voucher)`` writes only if the row's
      version still equals ``voucher.version`` (the version the caller read).
      The UPDATE itself carries ``WHERE version = ?`` via version_id_col, so a
      commit that slipped in between the check and the flush still fails.
    - Copy-on-write history: the new history/approver lists are written
      whole, in the same versioned UPDATE as the status change.

Failure modes:
    - VoucherNotFoundError / StatementNotFoundError on unknown ids.
    - ConcurrentModificationError when the version check fails (retryable).
    - ImmutabilityViolationError from the ORM listeners.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.domain.ledger import Statement
from ledger_kernel.domain.voucher import (
    BillingDetails,
    CollectionDetails,
    LiquidationDetails,
    Voucher,
)
from ledger_kernel.exceptions import (
    ConcurrentModificationError,
    StatementNotFoundError,
    VoucherNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.statement import StatementModel, StatementStatus
from ledger_kernel.models.voucher import CollectionAllocationModel, VoucherModel

logger = get_logger("services.voucher_store")


def coerce_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _column_values(voucher: Voucher) -> dict:
    """Flatten a voucher DTO into VoucherModel column values."""
    values = {
        "voucher_number": voucher.voucher_number,
        "transaction_type": voucher.transaction_type.value,
        "source_module": voucher.source_module,
        "amount": voucher.amount,
        "currency": voucher.currency,
        "purpose": voucher.purpose,
        "description": voucher.description,
        "vendor_name": voucher.vendor_name,
        "customer_id": voucher.customer_id,
        "customer_name": voucher.customer_name,
        "project_number": voucher.project_number,
        "expense_category": voucher.expense_category,
        "sub_category": voucher.sub_category,
        "payment_method": voucher.payment_method,
        "credit_terms": voucher.credit_terms,
        "due_date": voucher.due_date,
        "notes": voucher.notes,
        "line_items": [item.to_dict() for item in voucher.line_items],
        "requestor_id": voucher.requestor_id,
        "requestor_name": voucher.requestor_name,
        "status": voucher.status.value,
        "approvers": [a.to_dict() for a in voucher.approvers],
        "workflow_history": [h.to_dict() for h in voucher.workflow_history],
        "billing_status": None,
        "remaining_balance": None,
        "statement_reference": None,
        "linked_billings": None,
        "allocated_at": None,
        "parent_voucher_id": None,
        "posted_to_ledger": voucher.posted_to_ledger,
        "ledger_entry_id": voucher.ledger_entry_id,
        "posted_at": voucher.posted_at,
        "posted_by_id": voucher.posted_by_id,
    }
    payload = voucher.payload
    if isinstance(payload, BillingDetails):
        values["billing_status"] = payload.billing_status.value
        values["remaining_balance"] = payload.remaining_balance
        values["statement_reference"] = payload.statement_reference
    elif isinstance(payload, CollectionDetails):
        values["linked_billings"] = [
            {"billing_id": str(e.billing_id), "amount": str(e.amount)}
            for e in payload.linked_billings
        ]
        values["allocated_at"] = payload.allocated_at
        values["parent_voucher_id"] = payload.parent_voucher_id
    elif isinstance(payload, LiquidationDetails):
        values["parent_voucher_id"] = payload.parent_voucher_id
    return values


def _same(current, new) -> bool:
    if isinstance(current, datetime) and isinstance(new, datetime):
        if (current.tzinfo is None) != (new.tzinfo is None):
            return current.replace(tzinfo=None) == new.replace(tzinfo=None)
    return current == new


class VoucherStore:
    """
    Versioned voucher persistence.

    Contract:
        ``add`` inserts a new voucher; ``save`` writes a changed DTO back onto
        its row.  Both flush and return the freshly read DTO (with the new
        version).
    """

    def __init__(self, session: Session):
        self.session = session

    # -- vouchers ------------------------------------------------------------

    def _load(self, voucher_id: UUID | str) -> VoucherModel:
        key = coerce_uuid(voucher_id)
        model = self.session.get(VoucherModel, key) if key is not None else None
        if model is None:
            raise VoucherNotFoundError(str(voucher_id))
        return model

    def get(self, voucher_id: UUID | str) -> Voucher:
        """Read one voucher.

        Raises:
            VoucherNotFoundError: Unknown id.
        """
        return Voucher.from_model(self._load(voucher_id))

    def find(self, voucher_id: UUID | str) -> Voucher | None:
        key = coerce_uuid(voucher_id)
        model = self.session.get(VoucherModel, key) if key is not None else None
        return Voucher.from_model(model) if model is not None else None

    def get_many(self, voucher_ids: Iterable[UUID | str]) -> list[Voucher]:
        """Read vouchers in the given order; the first unknown id raises."""
        return [self.get(vid) for vid in voucher_ids]

    def add(self, voucher: Voucher) -> Voucher:
        model = VoucherModel(id=voucher.id, **_column_values(voucher))
        if voucher.created_at is not None:
            model.created_at = voucher.created_at
        self.session.add(model)
        self.session.flush()
        return Voucher.from_model(model)

    def save(self, voucher: Voucher) -> Voucher:
        """
        Write ``voucher`` back onto its row, conditional on its version.

        Preconditions:
            ``voucher.version`` is the version the caller read.

        Raises:
            ConcurrentModificationError: The row moved on since it was read.
        """
        model = self._load(voucher.id)
        if model.version != voucher.version:
            self._conflict("Voucher", voucher.id, expected=voucher.version, actual=model.version)

        for key, value in _column_values(voucher).items():
            if not _same(getattr(model, key), value):
                setattr(model, key, value)

        self._flush("Voucher", voucher.id)
        return Voucher.from_model(model)

    # -- allocations ---------------------------------------------------------

    def add_allocation(
        self,
        collection_id: UUID,
        billing_id: UUID,
        position: int,
        amount: Decimal,
        currency: str,
        remaining_after: Decimal,
        allocated_by_id: str,
        allocated_at: datetime,
    ) -> None:
        self.session.add(
            CollectionAllocationModel(
                collection_id=collection_id,
                billing_id=billing_id,
                position=position,
                amount=amount,
                currency=currency,
                remaining_after=remaining_after,
                allocated_by_id=allocated_by_id,
                allocated_at=allocated_at,
            )
        )

    # -- statements ----------------------------------------------------------

    def _load_statement(self, statement_reference: str) -> StatementModel:
        model = self.session.execute(
            select(StatementModel).where(
                StatementModel.statement_reference == statement_reference
            )
        ).scalar_one_or_none()
        if model is None:
            raise StatementNotFoundError(statement_reference)
        return model

    def get_statement(self, statement_reference: str) -> Statement:
        """
        Raises:
            StatementNotFoundError: Unknown reference.
        """
        return Statement.from_model(self._load_statement(statement_reference))

    def add_statement(
        self,
        statement_reference: str,
        member_count: int,
        total_amount: Decimal,
        currency: str,
        created_by_id: str,
        created_at: datetime,
    ) -> Statement:
        model = StatementModel(
            statement_reference=statement_reference,
            status=StatementStatus.OPEN,
            member_count=member_count,
            total_amount=total_amount,
            currency=currency,
            created_by_id=created_by_id,
            created_at=created_at,
        )
        self.session.add(model)
        self.session.flush()
        return Statement.from_model(model)

    def mark_statement_posted(
        self,
        statement: Statement,
        posted_by_id: str,
        posted_at: datetime,
        ledger_entry_id: UUID,
    ) -> Statement:
        """Flip an open statement to posted, conditional on its version."""
        model = self._load_statement(statement.statement_reference)
        if model.version != statement.version:
            self._conflict(
                "Statement",
                statement.statement_reference,
                expected=statement.version,
                actual=model.version,
            )
        model.status = StatementStatus.POSTED
        model.posted_by_id = posted_by_id
        model.posted_at = posted_at
        model.ledger_entry_id = ledger_entry_id
        self._flush("Statement", statement.statement_reference)
        return Statement.from_model(model)

    # -- helpers -------------------------------------------------------------

    def _flush(self, entity_type: str, entity_id) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "concurrent_modification_detected",
                extra={"entity_type": entity_type, "entity_id": str(entity_id)},
            )
            raise ConcurrentModificationError(entity_type, str(entity_id)) from exc

    def _conflict(self, entity_type: str, entity_id, expected: int, actual: int):
        logger.warning(
            "concurrent_modification_detected",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "expected_version": expected,
                "actual_version": actual,
            },
        )
        raise ConcurrentModificationError(entity_type, str(entity_id))
