"""
NumberingService -- human-readable voucher numbers and statement references.

Responsibility:
    Allocates ``<PREFIX>-<YYYY>-<SEQ>`` voucher numbers and
    ``SOA-<YYYYMMDD>-<SEQ>`` statement references from a counter table keyed
    by (kind, period), with row-level locking (``SELECT ... FOR UPDATE``) so
    concurrent callers never receive the same value.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by the workflow orchestrator before it opens its own unit of work.

Invariants enforced:
    - Uniqueness: the locked counter row is the sole source of truth for the
      next value.  The SQL aggregate-max-plus-one anti-pattern is never used.
    - No reuse: every allocation runs in its OWN short transaction that
      commits independently of the caller.  If the caller's operation later
      fails, the number is burned, never handed out again (gaps allowed).

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via savepoint
      rollback and retry).
    - ValidationError: unknown numbering kind.
    - OperationalError: store unavailable (propagated).
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date

from sqlalchemy import BigInteger, String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column, sessionmaker

from ledger_kernel.db.base import Base
from ledger_kernel.db.engine import session_scope
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.sequence")

STATEMENT_KIND = "statement"


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is one (name, period) sequence with its current value.
    Row-level locking ensures uniqueness under concurrency.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("name", "period", name="uq_sequence_counters_name_period"),
    )

    # Numbering kind (e.g. "expense", "billing", "statement")
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    # "2025" for voucher numbers, "20250314" for statement references
    period: Mapped[str] = mapped_column(String(8), nullable=False)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class NumberingService:
    """
    Allocates formatted identifiers from per-(kind, period) counters.

    Contract:
        ``next(kind, on_date)`` returns a formatted identifier that no other
        call, past or future, will return.

    Non-goals:
        - Does NOT participate in the caller's transaction.
        - Does NOT guarantee gap-free sequences.

    Usage:
        numbering = NumberingService(session_factory, prefixes={"expense": "EXP"})
        numbering.next("expense", date(2025, 3, 14))   # "EXP-2025-001"
        numbering.next("statement", date(2025, 3, 14)) # "SOA-20250314-001"
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        prefixes: Mapping[str, str],
        statement_prefix: str = "SOA",
        sequence_width: int = 3,
    ):
        self._session_factory = session_factory
        self._prefixes = dict(prefixes)
        self._statement_prefix = statement_prefix
        self._sequence_width = sequence_width

    def next(self, kind: str, on_date: date) -> str:
        """
        Allocate the next identifier for ``kind`` on ``on_date``.

        Args:
            kind: A transaction type value, or ``"statement"``.
            on_date: Business date; its year (vouchers) or full date
                (statements) is the counter period.

        Returns:
            The formatted identifier.

        Raises:
            ValidationError: ``kind`` has no configured prefix.
        """
        kind = getattr(kind, "value", kind)
        if kind == STATEMENT_KIND:
            prefix = self._statement_prefix
            period = on_date.strftime("%Y%m%d")
        else:
            prefix = self._prefixes.get(kind)
            if prefix is None:
                raise ValidationError(f"No numbering prefix configured for '{kind}'", field="kind")
            period = f"{on_date.year:04d}"

        value = self.next_value(kind, period)
        return f"{prefix}-{period}-{value:0{self._sequence_width}d}"

    def next_value(self, sequence_name: str, period: str) -> int:
        """
        Increment the (sequence_name, period) counter in its own transaction.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value previously
              returned for this (sequence_name, period).
            - The increment is committed before this method returns.
        """
        with session_scope(self._session_factory) as session:
            return self._increment(session, sequence_name, period)

    def _lock_counter(self, session: Session, sequence_name: str, period: str):
        return session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .where(SequenceCounter.period == period)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _increment(self, session: Session, sequence_name: str, period: str) -> int:
        counter = self._lock_counter(session, sequence_name, period)

        if counter is None:
            # First use of this (kind, period).  Another caller may create the
            # row at the same moment; a savepoint keeps that race recoverable.
            savepoint = session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, period=period, current_value=1)
                session.add(counter)
                session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "period": period, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name, "period": period},
                )
                savepoint.rollback()
                session.expire_all()
                counter = self._lock_counter(session, sequence_name, period)
                if counter is None:
                    raise

        counter.current_value += 1
        session.flush()
        logger.debug(
            "sequence_allocated",
            extra={
                "sequence_name": sequence_name,
                "period": period,
                "value": counter.current_value,
            },
        )
        return counter.current_value

    def current_value(self, sequence_name: str, period: str) -> int | None:
        """Current value of a counter without incrementing (None if unused)."""
        with session_scope(self._session_factory) as session:
            counter = session.execute(
                select(SequenceCounter)
                .where(SequenceCounter.name == sequence_name)
                .where(SequenceCounter.period == period)
            ).scalar_one_or_none()
            return counter.current_value if counter else None
