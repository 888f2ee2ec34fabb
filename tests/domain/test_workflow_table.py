"""
Tests for the voucher transition table and the role-based approval authority.

The table is the single source of truth for status changes: every
(status, action) pair outside it must be refused, and terminal states must
have no way out.
"""

import itertools

import pytest

from ledger_kernel.domain.authority import RoleApprovalAuthority
from ledger_kernel.domain.voucher import Actor, TransactionType, VoucherStatus
from ledger_kernel.domain.workflow import (
    ALL_ACTIONS,
    AUTO_APPROVE,
    CANCEL,
    FINALIZE,
    GENERATE_STATEMENT,
    REJECT,
    SUBMIT,
    VOUCHER_WORKFLOW,
    ActorRequirement,
    Transition,
    Workflow,
)

EXPECTED = {
    (VoucherStatus.DRAFT, "submit"): VoucherStatus.PENDING,
    (VoucherStatus.DRAFT, "auto_approve"): VoucherStatus.POSTED,
    (VoucherStatus.DRAFT, "cancel"): VoucherStatus.CANCELLED,
    (VoucherStatus.PENDING, "approve"): VoucherStatus.POSTED,
    (VoucherStatus.PENDING, "reject"): VoucherStatus.REJECTED,
    (VoucherStatus.PENDING, "cancel"): VoucherStatus.CANCELLED,
}


class TestTransitionTable:

    @pytest.mark.parametrize(
        "status, action", list(itertools.product(VoucherStatus, ALL_ACTIONS))
    )
    def test_closure_for_non_billing_types(self, status, action):
        transition = VOUCHER_WORKFLOW.find(status, action, TransactionType.EXPENSE)
        expected = EXPECTED.get((status, action))
        if expected is None:
            assert transition is None
        else:
            assert transition.to_state == expected

    def test_terminal_states_have_no_outgoing_actions(self):
        for status in VOUCHER_WORKFLOW.terminal_states:
            assert VOUCHER_WORKFLOW.actions_from(status) == frozenset()

    def test_statement_actions_are_billing_only(self):
        for tt in TransactionType:
            found = VOUCHER_WORKFLOW.find(VoucherStatus.DRAFT, GENERATE_STATEMENT, tt)
            assert (found is not None) == (tt == TransactionType.BILLING)
        finalize = VOUCHER_WORKFLOW.find(
            VoucherStatus.PENDING, FINALIZE, TransactionType.BILLING
        )
        assert finalize.to_state == VoucherStatus.POSTED

    def test_reject_requires_remarks(self):
        reject = VOUCHER_WORKFLOW.find(VoucherStatus.PENDING, REJECT)
        assert reject.requires_remarks

    def test_actor_requirements(self):
        assert VOUCHER_WORKFLOW.find(VoucherStatus.DRAFT, SUBMIT).requirement == ActorRequirement.OWNER
        assert (
            VOUCHER_WORKFLOW.find(VoucherStatus.DRAFT, AUTO_APPROVE).requirement
            == ActorRequirement.AUTHORITY
        )
        assert (
            VOUCHER_WORKFLOW.find(VoucherStatus.PENDING, CANCEL).requirement
            == ActorRequirement.OWNER_OR_ADMIN
        )

    def test_workflow_refuses_outgoing_transition_from_terminal(self):
        with pytest.raises(ValueError, match="Terminal state"):
            Workflow(
                name="broken",
                description="",
                initial_state=VoucherStatus.DRAFT,
                states=tuple(VoucherStatus),
                transitions=(
                    Transition(
                        VoucherStatus.POSTED,
                        VoucherStatus.DRAFT,
                        "reopen",
                        ActorRequirement.AUTHORITY,
                    ),
                ),
                terminal_states=(VoucherStatus.POSTED,),
            )


class TestRoleApprovalAuthority:

    @pytest.fixture
    def authority(self):
        return RoleApprovalAuthority(
            {"Accounting": ["*"], "Sales Manager": ["billing", "collection"]},
            administrative_roles=["Accounting", "Admin"],
        )

    def test_wildcard_grants_every_type(self, authority):
        actor = Actor("a", "A", "Accounting")
        assert all(authority.can_approve(actor, tt) for tt in TransactionType)

    def test_listed_types_only(self, authority):
        actor = Actor("s", "S", "sales manager")
        assert authority.can_approve(actor, TransactionType.BILLING)
        assert not authority.can_approve(actor, TransactionType.EXPENSE)

    def test_unknown_role_has_no_authority(self, authority):
        assert not authority.can_approve(Actor("e", "E", "Employee"), TransactionType.EXPENSE)

    def test_administrative_roles(self, authority):
        assert authority.is_administrative(Actor("x", "X", "admin"))
        assert not authority.is_administrative(Actor("s", "S", "Sales Manager"))
