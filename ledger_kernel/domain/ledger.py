"""
Statement and ledger-posting DTOs.

Pure frozen snapshots of ``StatementModel`` / ``LedgerPostingModel`` rows,
returned by the store, the poster and the selectors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from ledger_kernel.models.ledger_posting import LedgerPostingModel
    from ledger_kernel.models.statement import StatementModel


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Statement:
    statement_reference: str
    status: str
    member_count: int
    total_amount: Decimal
    currency: str
    created_by_id: str
    created_at: datetime | None = None
    posted_at: datetime | None = None
    posted_by_id: str | None = None
    ledger_entry_id: UUID | None = None
    version: int = field(default=1, compare=False)

    @property
    def is_posted(self) -> bool:
        return self.status == "posted"

    @classmethod
    def from_model(cls, model: StatementModel) -> Statement:
        return cls(
            statement_reference=model.statement_reference,
            status=model.status,
            member_count=model.member_count,
            total_amount=model.total_amount,
            currency=model.currency,
            created_by_id=model.created_by_id,
            created_at=_aware(model.created_at),
            posted_at=_aware(model.posted_at),
            posted_by_id=model.posted_by_id,
            ledger_entry_id=model.ledger_entry_id,
            version=model.version,
        )


@dataclass(frozen=True)
class LedgerPosting:
    """One exactly-once ledger entry for a statement or a single voucher."""

    id: UUID
    source_type: str
    source_reference: str
    amount: Decimal
    currency: str
    posted_by_id: str
    posted_at: datetime

    @classmethod
    def from_model(cls, model: LedgerPostingModel) -> LedgerPosting:
        return cls(
            id=model.id,
            source_type=model.source_type,
            source_reference=model.source_reference,
            amount=model.amount,
            currency=model.currency,
            posted_by_id=model.posted_by_id,
            posted_at=_aware(model.posted_at),
        )
