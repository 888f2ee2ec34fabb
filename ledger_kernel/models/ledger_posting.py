"""
Module: ledger_kernel.models.ledger_posting
Responsibility: ORM persistence for ledger postings -- the external side
    effect of finalizing a statement or posting an individual voucher.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly-once: UNIQUE(source_type, source_reference).  A second post of
      the same source fails with IntegrityError inside the same transaction
      that would have flipped the source, so the source never double-posts.
    - Rows are immutable from creation (db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class LedgerSourceType:
    STATEMENT = "statement"
    VOUCHER = "voucher"


class LedgerPostingModel(Base):
    """One ledger entry for one posted source."""

    __tablename__ = "ledger_postings"

    __table_args__ = (
        UniqueConstraint(
            "source_type", "source_reference", name="uq_ledger_postings_source"
        ),
        CheckConstraint(
            "source_type IN ('statement', 'voucher')",
            name="ck_ledger_postings_source_type",
        ),
    )

    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_reference: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    posted_by_id: Mapped[str] = mapped_column(String(100), nullable=False)
    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<LedgerPostingModel {self.source_type}:{self.source_reference} {self.amount}>"
