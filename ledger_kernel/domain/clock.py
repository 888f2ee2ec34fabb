"""
Clock -- where every ledger timestamp comes from.

History entries, approver signatures, allocation stamps, statement dates and
voucher numbering periods all read the injected clock, so a test can pin
"today" and get SOA-20250314-001 every run.  Engines never read a clock;
the orchestrator passes ``now`` to them.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """Returns timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        """Numbering period date (``YYYY`` for vouchers, ``YYYYMMDD`` for statements)."""
        return self.now().date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Pinned clock for tests, 2025-03-14 09:00 UTC unless told otherwise.

    ``now()`` does not move by itself; ``advance`` moves it forward, for
    example across midnight to open a new statement sequence.
    """

    DEFAULT = datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        start = start or self.DEFAULT
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._current = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new time."""
        step = timedelta(**delta)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot go backwards")
        self._current += step
        return self._current
