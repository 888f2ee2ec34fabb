"""
ORM-Level Immutability Enforcement.

===============================================================================
WHAT THIS GUARDS
===============================================================================

Posting a voucher or finalizing a statement is irreversible.  After that
point the record may only move along its billing/ledger axes; its approval
data is frozen.  Workflow history is an append-only audit trail.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                      | Rule
----------------------------|-------------------------------------------------
VoucherModel                | never deleted; history/approvers append-only;
                            | voucher_number and parent_voucher_id write-once;
                            | terminal status never left; posted rows only
                            | change billing/collection/ledger-axis fields;
                            | posted_to_ledger only goes false -> true
StatementModel              | never deleted; frozen once posted
LedgerPostingModel          | ALWAYS immutable
CollectionAllocationModel   | ALWAYS immutable

===============================================================================
USAGE
===============================================================================

Called automatically by ``init_engine_from_url``:

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    from ledger_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TERMINAL_STATUSES = frozenset({"Posted", "Rejected", "Cancelled"})

# Fields that may still change on a Posted voucher.
POSTED_VOUCHER_MUTABLE_FIELDS = frozenset(
    {
        "billing_status",
        "remaining_balance",
        "statement_reference",
        "allocated_at",
        "posted_to_ledger",
        "ledger_entry_id",
        "posted_at",
        "posted_by_id",
        "version",
        "updated_at",
    }
)

_STATEMENT_METADATA_FIELDS = frozenset({"version", "updated_at"})


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _previous_value(target, key: str):
    """Value of ``key`` as loaded from the database, before this flush."""
    hist = get_history(target, key)
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    return getattr(target, key)


def _check_append_only(target, key: str) -> None:
    hist = get_history(target, key)
    if not hist.added:
        return
    old = list(hist.deleted[0] or []) if hist.deleted else []
    new = list(hist.added[0] or [])
    if len(new) < len(old) or new[: len(old)] != old:
        _block(
            "Voucher",
            target.id,
            "UPDATE",
            f"'{key}' is append-only; existing entries cannot be rewritten",
            field=key,
        )


def _check_write_once(target, key: str) -> None:
    hist = get_history(target, key)
    if hist.deleted and hist.deleted[0] is not None and hist.added:
        _block(
            "Voucher",
            target.id,
            "UPDATE",
            f"'{key}' cannot change once set",
            field=key,
        )


def _check_voucher_immutability(mapper, connection, target):
    """
    Enforce voucher write rules on UPDATE.

    The posting transition itself (Draft/Pending -> Posted) is allowed to
    write anything; only writes to a row that was ALREADY Posted are limited
    to POSTED_VOUCHER_MUTABLE_FIELDS.
    """
    from ledger_kernel.models.voucher import VoucherModel

    if not isinstance(target, VoucherModel):
        return

    _check_append_only(target, "workflow_history")
    _check_append_only(target, "approvers")
    _check_write_once(target, "voucher_number")
    _check_write_once(target, "parent_voucher_id")

    previous_status = _previous_value(target, "status")
    status_hist = get_history(target, "status")

    if status_hist.deleted and previous_status in _TERMINAL_STATUSES:
        _block(
            "Voucher",
            target.id,
            "UPDATE",
            f"Status cannot leave terminal state {previous_status}",
            field="status",
        )

    ledger_hist = get_history(target, "posted_to_ledger")
    if ledger_hist.deleted and ledger_hist.deleted[0] and not target.posted_to_ledger:
        _block(
            "Voucher",
            target.id,
            "UPDATE",
            "posted_to_ledger cannot be reset",
            field="posted_to_ledger",
        )

    if previous_status != "Posted":
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in POSTED_VOUCHER_MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                "Voucher",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on posted voucher",
                field=attr.key,
            )


def _check_voucher_delete(mapper, connection, target):
    """Vouchers are never physically deleted; Cancelled is the terminal state."""
    _block("Voucher", target.id, "DELETE", "Vouchers cannot be deleted")


def _check_statement_immutability(mapper, connection, target):
    from ledger_kernel.models.statement import StatementModel, StatementStatus

    if not isinstance(target, StatementModel):
        return

    if _previous_value(target, "status") != StatementStatus.POSTED:
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _STATEMENT_METADATA_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                "Statement",
                target.statement_reference,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on posted statement",
                field=attr.key,
            )


def _check_statement_delete(mapper, connection, target):
    _block("Statement", target.statement_reference, "DELETE", "Statements cannot be deleted")


def _check_ledger_posting_immutability(mapper, connection, target):
    _block("LedgerPosting", target.id, "UPDATE", "Ledger postings are immutable")


def _check_ledger_posting_delete(mapper, connection, target):
    _block("LedgerPosting", target.id, "DELETE", "Ledger postings cannot be deleted")


def _check_allocation_immutability(mapper, connection, target):
    _block("CollectionAllocation", target.id, "UPDATE", "Allocations are append-only")


def _check_allocation_delete(mapper, connection, target):
    _block("CollectionAllocation", target.id, "DELETE", "Allocations cannot be deleted")


def _listeners():
    from ledger_kernel.models.ledger_posting import LedgerPostingModel
    from ledger_kernel.models.statement import StatementModel
    from ledger_kernel.models.voucher import CollectionAllocationModel, VoucherModel

    return (
        (VoucherModel, "before_update", _check_voucher_immutability),
        (VoucherModel, "before_delete", _check_voucher_delete),
        (StatementModel, "before_update", _check_statement_immutability),
        (StatementModel, "before_delete", _check_statement_delete),
        (LedgerPostingModel, "before_update", _check_ledger_posting_immutability),
        (LedgerPostingModel, "before_delete", _check_ledger_posting_delete),
        (CollectionAllocationModel, "before_update", _check_allocation_immutability),
        (CollectionAllocationModel, "before_delete", _check_allocation_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are skipped, so repeated engine
    initialization (one per test) does not stack duplicate checks.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
