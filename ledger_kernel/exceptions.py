"""
Typed Exception Hierarchy for the Voucher Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger engine (the back-office UI/API layer) must react to
failures precisely: a rejected statement claim is retried, an empty
rejection reason is shown back to the user, an over-allocation is fixed
by editing the collection.  Matching on message text is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)
  4. Every exception states whether it is RETRYABLE

Example:
    try:
        workflow.generate_statement(ids, actor)
    except ConcurrentModificationError:
        ...  # someone else touched a member -- retry
    except IneligibleItemError as e:
        api_response(code=e.code, ineligible=e.voucher_ids)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidCurrencyError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |
    +-- LookupFailedError
    |   +-- VoucherNotFoundError
    |   +-- StatementNotFoundError
    |   +-- TypeMismatchError
    |
    +-- ReconciliationError
    |   +-- OverAllocationError
    |   +-- IneligibleItemError
    |   +-- AlreadyAllocatedError
    |
    +-- PostingError
    |   +-- AlreadyPostedError
    |
    +-- LiquidationError
    |   +-- InvalidParentError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError    (the only retryable kind)
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed input (empty reason, amount < 0)
                | INVALID_CURRENCY            | Not a valid ISO 4217 code
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED                | Actor lacks role/authority for action
----------------|-----------------------------|-----------------------------------------
Workflow        | INVALID_TRANSITION          | Status change not in the transition table
----------------|-----------------------------|-----------------------------------------
Lookup          | VOUCHER_NOT_FOUND           | Referenced voucher id does not exist
                | STATEMENT_NOT_FOUND         | Statement reference does not exist
                | TYPE_MISMATCH               | Voucher has the wrong transaction type
----------------|-----------------------------|-----------------------------------------
Reconciliation  | OVER_ALLOCATION             | Collection exceeds billing remaining balance
                | INELIGIBLE_ITEM             | Voucher cannot join a statement
                | ALREADY_ALLOCATED           | Collection was already applied
----------------|-----------------------------|-----------------------------------------
Posting         | ALREADY_POSTED              | Statement/voucher already on the ledger
----------------|-----------------------------|-----------------------------------------
Liquidation     | INVALID_PARENT              | Parent not a posted budget request/advance
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION     | Optimistic version check failed (retry)
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Write to a frozen field / history rewrite

===============================================================================
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    retryable: bool = False


# Validation


class ValidationError(LedgerKernelError):
    """Input is malformed (bad amount, empty reason, illegal field combination)."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidCurrencyError(ValidationError):
    """Currency is not a valid ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'", field="currency")


# Authorization


class AuthorizationError(LedgerKernelError):
    """Base exception for role/authority failures."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedError(AuthorizationError):
    """Actor lacks the role or authority required for the action."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, action: str, reason: str):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"Actor {actor_id} may not {action}: {reason}")


# Workflow


class WorkflowError(LedgerKernelError):
    """Base exception for approval state machine errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """Requested status change is not in the transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, voucher_id: str, from_status: str, action: str, reason: str | None = None):
        self.voucher_id = voucher_id
        self.from_status = from_status
        self.action = action
        self.reason = reason
        message = f"Action '{action}' is not allowed on voucher {voucher_id} in status {from_status}"
        super().__init__(f"{message}: {reason}" if reason else message)


# Lookup


class LookupFailedError(LedgerKernelError):
    """Base exception for missing or mistyped references."""

    code: str = "LOOKUP_FAILED"


class VoucherNotFoundError(LookupFailedError):
    """Voucher with given ID was not found."""

    code: str = "VOUCHER_NOT_FOUND"

    def __init__(self, voucher_id: str):
        self.voucher_id = voucher_id
        super().__init__(f"Voucher not found: {voucher_id}")


class StatementNotFoundError(LookupFailedError):
    """Statement with given reference was not found."""

    code: str = "STATEMENT_NOT_FOUND"

    def __init__(self, statement_reference: str):
        self.statement_reference = statement_reference
        super().__init__(f"Statement not found: {statement_reference}")


class TypeMismatchError(LookupFailedError):
    """Referenced voucher has the wrong transaction type."""

    code: str = "TYPE_MISMATCH"

    def __init__(self, voucher_id: str, expected: str, actual: str):
        self.voucher_id = voucher_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Voucher {voucher_id} is a {actual} voucher, expected {expected}"
        )


# Reconciliation


class ReconciliationError(LedgerKernelError):
    """Base exception for statement and collection errors."""

    code: str = "RECONCILIATION_ERROR"


class OverAllocationError(ReconciliationError):
    """Collection entry exceeds the billing's remaining balance."""

    code: str = "OVER_ALLOCATION"

    def __init__(self, billing_id: str, requested: Decimal, remaining: Decimal):
        self.billing_id = billing_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Allocation of {requested} exceeds remaining balance {remaining} "
            f"on billing {billing_id}"
        )


class IneligibleItemError(ReconciliationError):
    """One or more vouchers are not eligible for the requested grouping."""

    code: str = "INELIGIBLE_ITEM"

    def __init__(self, voucher_ids: Iterable[str], reason: str):
        self.voucher_ids = tuple(voucher_ids)
        self.reason = reason
        super().__init__(
            f"Ineligible voucher(s) {', '.join(self.voucher_ids)}: {reason}"
        )


class AlreadyAllocatedError(ReconciliationError):
    """Collection voucher has already been applied against its billings."""

    code: str = "ALREADY_ALLOCATED"

    def __init__(self, collection_id: str):
        self.collection_id = collection_id
        super().__init__(f"Collection {collection_id} has already been allocated")


# Posting


class PostingError(LedgerKernelError):
    """Base exception for ledger posting errors."""

    code: str = "POSTING_ERROR"


class AlreadyPostedError(PostingError):
    """Statement or voucher is already on the ledger (re-posting refused)."""

    code: str = "ALREADY_POSTED"

    def __init__(self, source_type: str, source_reference: str):
        self.source_type = source_type
        self.source_reference = source_reference
        super().__init__(f"{source_type} {source_reference} is already posted to the ledger")


# Liquidation


class LiquidationError(LedgerKernelError):
    """Base exception for liquidation errors."""

    code: str = "LIQUIDATION_ERROR"


class InvalidParentError(LiquidationError):
    """Liquidation parent is missing, not posted, or of the wrong type."""

    code: str = "INVALID_PARENT"

    def __init__(self, parent_id: str, reason: str):
        self.parent_id = parent_id
        self.reason = reason
        super().__init__(f"Invalid liquidation parent {parent_id}: {reason}")


# Concurrency


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Optimistic version check failed; the caller should retry."""

    code: str = "CONCURRENT_MODIFICATION"
    retryable = True

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification on {entity_type} {entity_id}: "
            "record was changed by another transaction"
        )


# Immutability


class ImmutabilityError(LedgerKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify a frozen field, rewrite history, or delete a voucher."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
