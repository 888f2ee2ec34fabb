"""
LedgerPoster -- the exactly-once external ledger side effect.

Responsibility:
    Writes one ``LedgerPostingModel`` row per posted source (a finalized
    statement, or an individually posted voucher).

Architecture position:
    Kernel > Services -- imperative shell.  Flushes, never commits; the row
    lands in the same transaction that flips the source to posted.

Invariants enforced:
    - Exactly-once: an existing row for (source_type, source_reference)
      raises AlreadyPostedError before insert; the unique constraint catches
      the concurrent case at flush (IntegrityError -> AlreadyPostedError).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.ledger import LedgerPosting
from ledger_kernel.exceptions import AlreadyPostedError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger_posting import LedgerPostingModel

logger = get_logger("services.ledger_poster")


class LedgerPoster:
    """Append-only ledger posting writer.  Joins the caller's transaction."""

    def __init__(self, session: Session):
        self.session = session

    def find(self, source_type: str, source_reference: str) -> LedgerPosting | None:
        model = self.session.execute(
            select(LedgerPostingModel)
            .where(LedgerPostingModel.source_type == source_type)
            .where(LedgerPostingModel.source_reference == source_reference)
        ).scalar_one_or_none()
        return LedgerPosting.from_model(model) if model is not None else None

    def post(
        self,
        source_type: str,
        source_reference: str,
        amount: Decimal,
        currency: str,
        posted_by_id: str,
        posted_at: datetime,
    ) -> LedgerPosting:
        """
        Record a ledger entry for the source.

        Raises:
            AlreadyPostedError: The source already has a ledger entry.
        """
        if self.find(source_type, source_reference) is not None:
            raise AlreadyPostedError(source_type, source_reference)

        model = LedgerPostingModel(
            source_type=source_type,
            source_reference=source_reference,
            amount=amount,
            currency=currency,
            posted_by_id=posted_by_id,
            posted_at=posted_at,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(model)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise AlreadyPostedError(source_type, source_reference) from exc

        logger.info(
            "ledger_posted",
            extra={
                "source_type": source_type,
                "source_reference": source_reference,
                "ledger_entry_id": str(model.id),
                "amount": str(amount),
                "currency": currency,
            },
        )
        return LedgerPosting.from_model(model)
