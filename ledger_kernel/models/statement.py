"""
Module: ledger_kernel.models.statement
Responsibility: ORM persistence for statements of account (SOA).

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``statement_reference`` is unique.
    - ``status`` is open or posted; posted is irreversible (db/immutability.py).
    - Versioned like vouchers, so two finalizers cannot both flip the row.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase, UUIDString


class StatementStatus:
    OPEN = "open"
    POSTED = "posted"


class StatementModel(TimestampedBase):
    """A named grouping of billing vouchers."""

    __tablename__ = "statements"

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'posted')",
            name="ck_statements_valid_status",
        ),
        CheckConstraint("member_count > 0", name="ck_statements_has_members"),
    )

    statement_reference: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default=StatementStatus.OPEN)
    member_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    created_by_id: Mapped[str] = mapped_column(String(100), nullable=False)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ledger_entry_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<StatementModel {self.statement_reference} {self.status}>"
