"""
ledger_services.retry -- bounded retry for optimistic-concurrency conflicts.

The engine never retries on its own: a lost version race surfaces as
ConcurrentModificationError and every unit of work has already rolled back.
Callers that want to retry wrap the whole operation here.  Only
ConcurrentModificationError is retried; every other error propagates on the
first attempt.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from ledger_kernel.exceptions import ConcurrentModificationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

MAX_ATTEMPTS = 10


def retry_on_conflict(operation: Callable[[], T], max_attempts: int = 3) -> T:
    """
    Run ``operation`` until it succeeds or ``max_attempts`` conflicts occurred.

    Raises:
        ValueError: ``max_attempts`` outside 1..MAX_ATTEMPTS.
        ConcurrentModificationError: Still conflicting on the last attempt.
    """
    if not 1 <= max_attempts <= MAX_ATTEMPTS:
        raise ValueError(f"max_attempts must be between 1 and {MAX_ATTEMPTS}")

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except ConcurrentModificationError as exc:
            if attempt == max_attempts:
                logger.warning(
                    "concurrent_modification_retry_exhausted",
                    extra={
                        "attempts": attempt,
                        "entity_type": exc.entity_type,
                        "entity_id": exc.entity_id,
                    },
                )
                raise
            logger.info(
                "concurrent_modification_retry",
                extra={
                    "attempt": attempt,
                    "entity_type": exc.entity_type,
                    "entity_id": exc.entity_id,
                },
            )
    raise AssertionError("unreachable")
