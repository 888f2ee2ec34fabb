"""
Module: ledger_kernel.models.voucher
Responsibility: ORM persistence for vouchers and applied collection
    allocations.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Optimistic concurrency: ``version`` is the mapper's version_id_col, so
      every UPDATE carries ``WHERE version = ?`` and a lost race surfaces as
      StaleDataError.
    - Check constraints: known status values, non-negative amount, and
      ``0 <= remaining_balance <= amount`` on billings.
    - ``voucher_number`` is unique.
    - Posted-row immutability, append-only history and the no-delete rule are
      enforced by ORM listeners in db/immutability.py.

Failure modes:
    - IntegrityError on duplicate voucher_number or a violated check.
    - StaleDataError on a version mismatch at flush.
    - ImmutabilityViolationError from the listeners.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, TimestampedBase, UUIDString


class VoucherModel(TimestampedBase):
    """Persistent voucher row.

    The axis payload is flattened into nullable columns: billing fields are
    only set on billings, ``linked_billings``/``allocated_at`` only on
    collections and ``parent_voucher_id`` only on liquidating expenses.
    """

    __tablename__ = "vouchers"

    __table_args__ = (
        CheckConstraint(
            "status IN ('Draft', 'Pending', 'Posted', 'Rejected', 'Cancelled')",
            name="ck_vouchers_valid_status",
        ),
        CheckConstraint("amount >= 0", name="ck_vouchers_amount_non_negative"),
        CheckConstraint(
            "remaining_balance IS NULL OR "
            "(remaining_balance >= 0 AND remaining_balance <= amount)",
            name="ck_vouchers_remaining_balance_bounds",
        ),
        Index("ix_vouchers_type_status", "transaction_type", "status"),
        Index("ix_vouchers_statement_reference", "statement_reference"),
        Index("ix_vouchers_parent", "parent_voucher_id"),
    )

    voucher_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    source_module: Mapped[str] = mapped_column(String(50), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    project_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expense_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sub_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    credit_terms: Mapped[str | None] = mapped_column(String(50), nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    line_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    requestor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    requestor_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Approval axis
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Draft")
    approvers: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    workflow_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    # Billing axis
    billing_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    remaining_balance: Mapped[Decimal | None] = mapped_column(nullable=True)
    statement_reference: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Collection axis
    linked_billings: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    allocated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Liquidation axis
    parent_voucher_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("vouchers.id"), nullable=True
    )

    # Ledger axis
    posted_to_ledger: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ledger_entry_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<VoucherModel {self.voucher_number} {self.transaction_type} "
            f"{self.status} v{self.version}>"
        )


class CollectionAllocationModel(Base):
    """One applied entry of a collection against a billing.

    Append-only.  ``remaining_balance(billing) = amount - sum(allocations)``
    can be recomputed from these rows at any time.
    """

    __tablename__ = "collection_allocations"

    __table_args__ = (
        UniqueConstraint("collection_id", "position", name="uq_collection_allocation_position"),
        CheckConstraint("amount > 0", name="ck_collection_allocations_positive"),
        Index("ix_collection_allocations_billing", "billing_id"),
    )

    collection_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("vouchers.id"), nullable=False
    )
    billing_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("vouchers.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    remaining_after: Mapped[Decimal] = mapped_column(nullable=False)
    allocated_by_id: Mapped[str] = mapped_column(String(100), nullable=False)
    allocated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<CollectionAllocationModel {self.collection_id}->{self.billing_id} "
            f"{self.amount} {self.currency}>"
        )
