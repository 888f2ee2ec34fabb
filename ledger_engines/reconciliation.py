"""
ledger_engines.reconciliation -- Pure statement and collection planning.

Responsibility:
    Decide what a statement generation, a collection allocation or a
    statement finalization would write, as new frozen voucher snapshots.
    The orchestrator persists the plan in one unit of work, or nothing.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Statement eligibility: billing, Draft, unbilled, no statement reference.
    - Collections apply only to billings already on a statement, so a
      statement claim never overwrites an allocated balance.
    - Conservation: for every allocation plan, the sum of entry amounts
      equals the total decrease of the affected billings' remaining
      balances, and no remaining balance goes below zero.
    - Billing status: paid when remaining <= tolerance, partial when
      0 < remaining < amount, otherwise unchanged.

Failure modes:
    - ValidationError, IneligibleItemError, TypeMismatchError,
      InvalidTransitionError, AlreadyAllocatedError, VoucherNotFoundError,
      OverAllocationError, UnauthorizedError (see each function).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from ledger_engines.approval import apply_transition
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.authority import ApprovalAuthority
from ledger_kernel.domain.voucher import (
    Actor,
    BillingDetails,
    BillingStatus,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from ledger_kernel.domain.workflow import FINALIZE, GENERATE_STATEMENT
from ledger_kernel.exceptions import (
    AlreadyAllocatedError,
    IneligibleItemError,
    InvalidTransitionError,
    OverAllocationError,
    TypeMismatchError,
    UnauthorizedError,
    ValidationError,
    VoucherNotFoundError,
)

DEFAULT_PAID_TOLERANCE = Decimal("0.01")

_EXCLUDED_STATUSES = frozenset({VoucherStatus.CANCELLED, VoucherStatus.REJECTED})


def require_billing_authority(actor: Actor, authority: ApprovalAuthority, action: str) -> None:
    if not authority.can_approve(actor, TransactionType.BILLING):
        raise UnauthorizedError(
            actor.id, action, f"role '{actor.role}' has no approval authority for billings"
        )


def is_statement_eligible(voucher: Voucher) -> bool:
    """Billing, in Draft, unbilled and not yet on a statement."""
    return (
        voucher.transaction_type == TransactionType.BILLING
        and voucher.status == VoucherStatus.DRAFT
        and voucher.statement_reference is None
        and voucher.billing.billing_status == BillingStatus.UNBILLED
    )


def validate_statement_ids(voucher_ids: Sequence[UUID | str]) -> None:
    """
    Raises:
        ValidationError: Empty list or duplicate ids.
    """
    if not voucher_ids:
        raise ValidationError("A statement needs at least one billing", field="voucher_ids")
    seen: set[str] = set()
    for vid in voucher_ids:
        key = str(vid)
        if key in seen:
            raise ValidationError(f"Duplicate voucher id {key}", field="voucher_ids")
        seen.add(key)


def billing_status_after(
    amount: Decimal,
    remaining: Decimal,
    current: BillingStatus,
    tolerance: Decimal = DEFAULT_PAID_TOLERANCE,
) -> BillingStatus:
    """Billing status once ``remaining`` is left of ``amount``."""
    if remaining <= tolerance:
        return BillingStatus.PAID
    if Decimal("0") < remaining < amount:
        return BillingStatus.PARTIAL
    return current


# ---------------------------------------------------------------------------
# Generate statement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatementPlan:
    statement_reference: str
    members: tuple[Voucher, ...]
    total_amount: Decimal
    currency: str


@traced_engine("reconciliation.statement", "1.0", fingerprint_fields=("statement_reference",))
def plan_statement(
    members: Sequence[Voucher],
    statement_reference: str,
    actor: Actor,
    authority: ApprovalAuthority,
    now: datetime,
) -> StatementPlan:
    """
    Claim ``members`` for a new statement.

    Each member moves Draft -> Pending (history action ``generate_statement``)
    and gets ``billed`` / ``remaining_balance = amount`` / the reference.

    Raises:
        UnauthorizedError: Actor lacks billing authority.
        IneligibleItemError: Some member fails the eligibility predicate
            (lists every offending id).
        ValidationError: Members are in more than one currency.
    """
    require_billing_authority(actor, authority, GENERATE_STATEMENT)
    validate_statement_ids([m.id for m in members])

    ineligible = [str(m.id) for m in members if not is_statement_eligible(m)]
    if ineligible:
        raise IneligibleItemError(
            ineligible,
            "statement members must be Draft billings not yet on a statement",
        )

    currencies = {m.currency for m in members}
    if len(currencies) > 1:
        raise ValidationError(
            f"Statement members must share one currency, got {sorted(currencies)}",
            field="currency",
        )

    claimed = []
    for member in members:
        outcome = apply_transition(
            member,
            action=GENERATE_STATEMENT,
            actor=actor,
            authority=authority,
            now=now,
        )
        claimed.append(
            replace(
                outcome.voucher,
                payload=BillingDetails(
                    billing_status=BillingStatus.BILLED,
                    remaining_balance=member.amount,
                    statement_reference=statement_reference,
                ),
            )
        )

    return StatementPlan(
        statement_reference=statement_reference,
        members=tuple(claimed),
        total_amount=sum((m.amount for m in members), Decimal("0")),
        currency=members[0].currency,
    )


# ---------------------------------------------------------------------------
# Allocate collection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationLine:
    position: int
    billing_id: UUID
    amount: Decimal
    remaining_after: Decimal


@dataclass(frozen=True)
class AllocationPlan:
    collection: Voucher
    billings: tuple[Voucher, ...]
    lines: tuple[AllocationLine, ...]

    @property
    def total_allocated(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))


def check_collection(collection: Voucher) -> None:
    """
    Raises:
        TypeMismatchError: Not a collection voucher.
        InvalidTransitionError: Collection is Cancelled or Rejected.
        AlreadyAllocatedError: Collection was already applied.
        ValidationError: No linked billings.
    """
    if collection.transaction_type != TransactionType.COLLECTION:
        raise TypeMismatchError(
            str(collection.id), TransactionType.COLLECTION.value, collection.transaction_type.value
        )
    if collection.status in _EXCLUDED_STATUSES:
        raise InvalidTransitionError(str(collection.id), collection.status.value, "allocate")
    details = collection.collection
    if details.allocated_at is not None:
        raise AlreadyAllocatedError(str(collection.id))
    if not details.linked_billings:
        raise ValidationError("Collection has no linked billings", field="linked_billings")


@traced_engine("reconciliation.allocation", "1.0")
def plan_allocation(
    collection: Voucher,
    billings: Mapping[UUID, Voucher],
    now: datetime,
    tolerance: Decimal = DEFAULT_PAID_TOLERANCE,
) -> AllocationPlan:
    """
    Apply a collection's linked billings, in order, against running balances.

    ``billings`` maps billing id to its current snapshot; ids absent from
    the mapping do not exist.  Repeated ids are applied sequentially.

    Raises:
        (see check_collection), VoucherNotFoundError, TypeMismatchError,
        IneligibleItemError, ValidationError (currency), OverAllocationError.
    """
    check_collection(collection)

    running: dict[UUID, Voucher] = {}
    order: list[UUID] = []
    lines: list[AllocationLine] = []

    for position, entry in enumerate(collection.collection.linked_billings):
        current = running.get(entry.billing_id) or billings.get(entry.billing_id)
        if current is None:
            raise VoucherNotFoundError(str(entry.billing_id))
        if current.transaction_type != TransactionType.BILLING:
            raise TypeMismatchError(
                str(current.id), TransactionType.BILLING.value, current.transaction_type.value
            )
        if current.status in _EXCLUDED_STATUSES:
            raise IneligibleItemError(
                [str(current.id)], f"billing is {current.status.value}"
            )
        if current.billing.billing_status == BillingStatus.UNBILLED:
            raise IneligibleItemError(
                [str(current.id)], "billing is not yet on a statement"
            )
        if current.currency != collection.currency:
            raise ValidationError(
                f"Collection currency {collection.currency} does not match billing "
                f"{current.id} currency {current.currency}",
                field="currency",
            )

        details = current.billing
        if entry.amount > details.remaining_balance:
            raise OverAllocationError(
                str(current.id), entry.amount, details.remaining_balance
            )

        remaining = details.remaining_balance - entry.amount
        updated = replace(
            current,
            payload=replace(
                details,
                remaining_balance=remaining,
                billing_status=billing_status_after(
                    current.amount, remaining, details.billing_status, tolerance
                ),
            ),
        )
        if entry.billing_id not in running:
            order.append(entry.billing_id)
        running[entry.billing_id] = updated
        lines.append(
            AllocationLine(
                position=position,
                billing_id=entry.billing_id,
                amount=entry.amount,
                remaining_after=remaining,
            )
        )

    stamped = replace(
        collection,
        payload=replace(collection.collection, allocated_at=now),
    )
    return AllocationPlan(
        collection=stamped,
        billings=tuple(running[bid] for bid in order),
        lines=tuple(lines),
    )


# ---------------------------------------------------------------------------
# Finalize statement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FinalizePlan:
    """Members to write (posted now), members already posted, and exclusions."""

    transitioned: tuple[Voucher, ...]
    already_posted: tuple[Voucher, ...]
    excluded: tuple[Voucher, ...]

    @property
    def included(self) -> tuple[Voucher, ...]:
        return self.transitioned + self.already_posted

    @property
    def total_amount(self) -> Decimal:
        return sum((m.amount for m in self.included), Decimal("0"))


@traced_engine("reconciliation.finalize", "1.0", fingerprint_fields=("statement_reference",))
def plan_finalize(
    members: Sequence[Voucher],
    statement_reference: str,
    actor: Actor,
    authority: ApprovalAuthority,
    now: datetime,
) -> FinalizePlan:
    """
    Move Pending members to Posted and set aside Cancelled/Rejected ones.

    Raises:
        UnauthorizedError: Actor lacks billing authority.
        IneligibleItemError: No member is Pending or Posted.
    """
    require_billing_authority(actor, authority, FINALIZE)

    transitioned: list[Voucher] = []
    already_posted: list[Voucher] = []
    excluded: list[Voucher] = []
    for member in members:
        if member.status == VoucherStatus.PENDING:
            outcome = apply_transition(
                member,
                action=FINALIZE,
                actor=actor,
                authority=authority,
                now=now,
            )
            transitioned.append(outcome.voucher)
        elif member.status == VoucherStatus.POSTED:
            already_posted.append(member)
        else:
            excluded.append(member)

    if not transitioned and not already_posted:
        raise IneligibleItemError(
            [str(m.id) for m in members] or [statement_reference],
            f"statement {statement_reference} has no member left to post",
        )

    return FinalizePlan(
        transitioned=tuple(transitioned),
        already_posted=tuple(already_posted),
        excluded=tuple(excluded),
    )
