"""
Canonical workflow types (``ledger_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the voucher approval state machine, and the single
transition table every status change is checked against.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ledger_kernel.domain.voucher import TransactionType, VoucherStatus


class ActorRequirement(str, Enum):
    """Who may fire a transition."""

    OWNER = "owner"
    AUTHORITY = "authority"
    OWNER_OR_ADMIN = "owner_or_admin"


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``applies_to`` restricts the transition to some transaction types;
    empty means every type.
    """

    from_state: VoucherStatus
    to_state: VoucherStatus
    action: str
    requirement: ActorRequirement
    requires_remarks: bool = False
    applies_to: frozenset[TransactionType] = frozenset()


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    """

    name: str
    description: str
    initial_state: VoucherStatus
    states: tuple[VoucherStatus, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[VoucherStatus, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"initial_state {self.initial_state} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"Transition {t.action} references unknown state")
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Terminal state {t.from_state.value} has outgoing transition {t.action}"
                )

    def find(
        self,
        from_state: VoucherStatus,
        action: str,
        transaction_type: TransactionType | None = None,
    ) -> Transition | None:
        """Return the transition for (state, action), or None when not allowed."""
        for t in self.transitions:
            if t.from_state != from_state or t.action != action:
                continue
            if t.applies_to and transaction_type not in t.applies_to:
                continue
            return t
        return None

    def actions_from(self, from_state: VoucherStatus) -> frozenset[str]:
        return frozenset(t.action for t in self.transitions if t.from_state == from_state)


SUBMIT = "submit"
AUTO_APPROVE = "auto_approve"
APPROVE = "approve"
REJECT = "reject"
CANCEL = "cancel"
GENERATE_STATEMENT = "generate_statement"
FINALIZE = "finalize"

ALL_ACTIONS = (SUBMIT, AUTO_APPROVE, APPROVE, REJECT, CANCEL, GENERATE_STATEMENT, FINALIZE)

_BILLING_ONLY = frozenset({TransactionType.BILLING})

VOUCHER_WORKFLOW = Workflow(
    name="voucher",
    description="Approval axis shared by every transaction type",
    initial_state=VoucherStatus.DRAFT,
    states=tuple(VoucherStatus),
    transitions=(
        Transition(VoucherStatus.DRAFT, VoucherStatus.PENDING, SUBMIT, ActorRequirement.OWNER),
        Transition(
            VoucherStatus.DRAFT, VoucherStatus.POSTED, AUTO_APPROVE, ActorRequirement.AUTHORITY
        ),
        Transition(
            VoucherStatus.PENDING, VoucherStatus.POSTED, APPROVE, ActorRequirement.AUTHORITY
        ),
        Transition(
            VoucherStatus.PENDING,
            VoucherStatus.REJECTED,
            REJECT,
            ActorRequirement.AUTHORITY,
            requires_remarks=True,
        ),
        Transition(
            VoucherStatus.DRAFT, VoucherStatus.CANCELLED, CANCEL, ActorRequirement.OWNER_OR_ADMIN
        ),
        Transition(
            VoucherStatus.PENDING,
            VoucherStatus.CANCELLED,
            CANCEL,
            ActorRequirement.OWNER_OR_ADMIN,
        ),
        # Statement claims and ledger finalization, billing vouchers only.
        Transition(
            VoucherStatus.DRAFT,
            VoucherStatus.PENDING,
            GENERATE_STATEMENT,
            ActorRequirement.AUTHORITY,
            applies_to=_BILLING_ONLY,
        ),
        Transition(
            VoucherStatus.PENDING,
            VoucherStatus.POSTED,
            FINALIZE,
            ActorRequirement.AUTHORITY,
            applies_to=_BILLING_ONLY,
        ),
    ),
    terminal_states=(
        VoucherStatus.POSTED,
        VoucherStatus.REJECTED,
        VoucherStatus.CANCELLED,
    ),
)
