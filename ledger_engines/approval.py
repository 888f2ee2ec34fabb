"""
ledger_engines.approval -- Pure approval state machine.

Responsibility:
    Apply one workflow action to a voucher snapshot: check the transition
    table, the actor's role/authority and any sequential approval chain,
    then return the new voucher snapshot together with the single history
    entry the action appends.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel/domain/ types and kernel exceptions.

Invariants enforced:
    - Status changes only via ``VOUCHER_WORKFLOW``; terminal states have no
      outgoing transitions.
    - Every successful action appends exactly one history entry (copy-on-
      write: a new tuple, never an in-place append).
    - A failed check raises before anything is built; the input voucher is
      frozen and never mutated.
    - Purity: the caller passes ``now``; no clock access, no I/O.

Failure modes:
    - InvalidTransitionError: (status, action) not in the table.
    - ValidationError: reject without a reason.
    - UnauthorizedError: wrong owner/role/authority, out-of-order chain
      approval, or the same actor approving twice.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.authority import ApprovalAuthority
from ledger_kernel.domain.voucher import (
    Actor,
    Approver,
    HistoryEntry,
    Voucher,
    VoucherStatus,
)
from ledger_kernel.domain.workflow import (
    APPROVE,
    AUTO_APPROVE,
    CANCEL,
    FINALIZE,
    VOUCHER_WORKFLOW,
    ActorRequirement,
    Transition,
)
from ledger_kernel.exceptions import (
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)

# Actions that register the actor as an approver.
_SIGNING_ACTIONS = frozenset({APPROVE, AUTO_APPROVE, FINALIZE})
# Finalizing a statement may be done by someone who already signed a member.
_ONE_SIGNATURE_ACTIONS = frozenset({APPROVE, AUTO_APPROVE})


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of one successful action."""

    voucher: Voucher
    history_entry: HistoryEntry
    transition: Transition

    @property
    def status_changed(self) -> bool:
        return self.history_entry.from_status != self.history_entry.status


def find_transition(voucher: Voucher, action: str) -> Transition:
    """Look up the transition or raise InvalidTransitionError.

    An applied collection can no longer be cancelled.
    """
    transition = VOUCHER_WORKFLOW.find(voucher.status, action, voucher.transaction_type)
    if transition is None:
        raise InvalidTransitionError(str(voucher.id), voucher.status.value, action)
    collection = voucher.collection
    if action == CANCEL and collection is not None and collection.allocated_at is not None:
        raise InvalidTransitionError(
            str(voucher.id), voucher.status.value, action, "collection is already applied"
        )
    return transition


def next_chain_role(voucher: Voucher, chain: Sequence[str]) -> str | None:
    """The role whose signature is due next, or None once the chain is full."""
    filled = len(voucher.approvers)
    if filled >= len(chain):
        return None
    return chain[filled]


def _same_role(a: str, b: str) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def authorize(
    voucher: Voucher,
    transition: Transition,
    actor: Actor,
    authority: ApprovalAuthority,
    chain: Sequence[str] = (),
) -> None:
    """
    Check that ``actor`` may fire ``transition`` on ``voucher``.

    With a non-empty chain, an ``approve`` is authorized by the actor's role
    being the next unfilled chain role; otherwise by ``can_approve``.

    Raises:
        UnauthorizedError: The actor may not fire the transition.
    """
    action = transition.action
    requirement = transition.requirement

    if requirement == ActorRequirement.OWNER:
        if actor.id != voucher.requestor_id:
            raise UnauthorizedError(actor.id, action, "only the requestor may do this")
        return

    if requirement == ActorRequirement.OWNER_OR_ADMIN:
        if actor.id != voucher.requestor_id and not authority.is_administrative(actor):
            raise UnauthorizedError(
                actor.id, action, "only the requestor or an administrative role may do this"
            )
        return

    if action in _ONE_SIGNATURE_ACTIONS and voucher.has_approved(actor.id):
        raise UnauthorizedError(actor.id, action, "actor has already approved this voucher")

    if action == APPROVE and chain:
        expected = next_chain_role(voucher, chain)
        if expected is None or not _same_role(actor.role, expected):
            raise UnauthorizedError(
                actor.id,
                action,
                f"approval chain expects role '{expected}', actor has role '{actor.role}'",
            )
        return

    if not authority.can_approve(actor, voucher.transaction_type):
        raise UnauthorizedError(
            actor.id,
            action,
            f"role '{actor.role}' has no approval authority for "
            f"{voucher.transaction_type.value} vouchers",
        )


@traced_engine("approval", "1.0", fingerprint_fields=("action",))
def apply_transition(
    voucher: Voucher,
    action: str,
    actor: Actor,
    authority: ApprovalAuthority,
    chain: Sequence[str] = (),
    now: datetime | None = None,
    remarks: str | None = None,
) -> TransitionOutcome:
    """
    Apply ``action`` to ``voucher``.

    Args:
        voucher: Current snapshot (as read, carrying its version).
        action: One of the workflow actions.
        actor: The resolved caller.
        authority: Injected approval capability.
        chain: Ordered role list for sequential approval of this type.
        now: Timestamp for the history entry (required).
        remarks: Free text; mandatory for ``reject``.

    Returns:
        TransitionOutcome with the new snapshot (same version; the store
        bumps it on write) and the appended history entry.
    """
    if now is None:
        raise ValueError("apply_transition requires an explicit 'now'")

    transition = find_transition(voucher, action)

    if transition.requires_remarks and not (remarks and remarks.strip()):
        raise ValidationError(f"A reason is required to {action}", field="remarks")

    authorize(voucher, transition, actor, authority, chain)

    approvers = voucher.approvers
    to_status = transition.to_state
    if action in _SIGNING_ACTIONS and not voucher.has_approved(actor.id):
        approvers = approvers + (
            Approver(
                id=actor.id,
                name=actor.name,
                role=actor.role,
                approved_at=now,
                remarks=remarks,
            ),
        )
        if action == APPROVE and chain and len(approvers) < len(chain):
            to_status = VoucherStatus.PENDING

    entry = HistoryEntry(
        timestamp=now,
        from_status=voucher.status,
        status=to_status,
        actor_id=actor.id,
        actor_name=actor.name,
        actor_role=actor.role,
        action=action,
        remarks=remarks,
    )

    new_voucher = replace(
        voucher,
        status=to_status,
        approvers=approvers,
        workflow_history=voucher.workflow_history + (entry,),
    )
    return TransitionOutcome(voucher=new_voucher, history_entry=entry, transition=transition)
