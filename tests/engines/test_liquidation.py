"""Tests for the pure liquidation planner (ledger_engines.liquidation)."""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_engines.liquidation import (
    RETURN_OF_FUNDS,
    ExpenseEntry,
    plan_liquidation,
    plan_settlement,
    summarize,
    validate_parent,
)
from ledger_kernel.domain.voucher import (
    CollectionDetails,
    LiquidationDetails,
    LiquidationStatus,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from ledger_kernel.exceptions import (
    IneligibleItemError,
    InvalidCurrencyError,
    InvalidParentError,
    ValidationError,
)


def make_voucher(transaction_type, amount="50000", status=VoucherStatus.POSTED, **kw) -> Voucher:
    return Voucher(
        id=uuid4(),
        voucher_number="BR-2025-001",
        transaction_type=transaction_type,
        source_module="operations",
        amount=Decimal(amount),
        currency="PHP",
        purpose="Site mobilization",
        requestor_id="emp-001",
        requestor_name="Maria Santos",
        status=status,
        **kw,
    )


def child_of(parent, amount, status):
    return make_voucher(
        TransactionType.EXPENSE,
        amount=amount,
        status=status,
        payload=LiquidationDetails(parent.id),
    )


def refund_of(parent, amount, status=VoucherStatus.DRAFT):
    return make_voucher(
        TransactionType.COLLECTION,
        amount=amount,
        status=status,
        payload=CollectionDetails(linked_billings=(), parent_voucher_id=parent.id),
    )


class TestValidateParent:

    def test_missing_parent(self):
        with pytest.raises(InvalidParentError, match="does not exist"):
            validate_parent(None, "p-1")

    @pytest.mark.parametrize("tt", [TransactionType.EXPENSE, TransactionType.BILLING])
    def test_wrong_type(self, tt):
        with pytest.raises(InvalidParentError, match="expected budget_request"):
            validate_parent(make_voucher(tt), "p-1")

    def test_parent_must_be_posted(self):
        with pytest.raises(InvalidParentError, match="expected Posted"):
            validate_parent(make_voucher(TransactionType.CASH_ADVANCE, status=VoucherStatus.PENDING), "p-1")

    def test_valid_parents(self):
        for tt in (TransactionType.BUDGET_REQUEST, TransactionType.CASH_ADVANCE):
            parent = make_voucher(tt)
            assert validate_parent(parent, parent.id) is parent


class TestPlanLiquidation:

    def test_normalizes_amount_and_currency(self):
        parent = make_voucher(TransactionType.BUDGET_REQUEST)
        (entry,) = plan_liquidation(parent, [ExpenseEntry(amount="20000", purpose="Cement")])
        assert entry.amount == Decimal("20000")
        assert entry.currency == "PHP"

    def test_empty_entries(self):
        with pytest.raises(ValidationError):
            plan_liquidation(make_voucher(TransactionType.BUDGET_REQUEST), [])

    def test_blank_purpose(self):
        with pytest.raises(ValidationError, match="purpose"):
            plan_liquidation(
                make_voucher(TransactionType.BUDGET_REQUEST),
                [ExpenseEntry(amount=Decimal("1"), purpose="  ")],
            )

    def test_currency_mismatch(self):
        with pytest.raises(ValidationError, match="currency"):
            plan_liquidation(
                make_voucher(TransactionType.BUDGET_REQUEST),
                [ExpenseEntry(amount=Decimal("1"), purpose="x", currency="USD")],
            )

    def test_unknown_currency(self):
        with pytest.raises(InvalidCurrencyError):
            plan_liquidation(
                make_voucher(TransactionType.BUDGET_REQUEST),
                [ExpenseEntry(amount=Decimal("1"), purpose="x", currency="ZZZ")],
            )


class TestSummarize:

    def test_only_posted_children_count(self):
        parent = make_voucher(TransactionType.BUDGET_REQUEST)
        children = [
            child_of(parent, "20000", VoucherStatus.POSTED),
            child_of(parent, "5000", VoucherStatus.DRAFT),
            child_of(parent, "7000", VoucherStatus.PENDING),
            child_of(parent, "9000", VoucherStatus.REJECTED),
        ]
        summary = summarize(parent, children)
        assert summary.total_liquidated == Decimal("20000")
        assert summary.over_liquidated == Decimal("-30000")
        assert not summary.is_over_liquidated
        assert (summary.posted_count, summary.pending_count) == (1, 2)

    def test_overspend(self):
        parent = make_voucher(TransactionType.CASH_ADVANCE, amount="1000")
        summary = summarize(
            parent,
            [child_of(parent, "800", VoucherStatus.POSTED), child_of(parent, "300", VoucherStatus.POSTED)],
        )
        assert summary.over_liquidated == Decimal("100")
        assert summary.is_over_liquidated

    def test_children_of_other_parents_ignored(self):
        parent = make_voucher(TransactionType.BUDGET_REQUEST)
        other = make_voucher(TransactionType.BUDGET_REQUEST)
        summary = summarize(parent, [child_of(other, "10", VoucherStatus.POSTED)])
        assert summary.total_liquidated == Decimal("0")
        assert summary.parent_id == parent.id

    def test_nothing_posted_is_not_over_or_under(self):
        parent = make_voucher(TransactionType.BUDGET_REQUEST)
        summary = summarize(parent, [child_of(parent, "20000", VoucherStatus.DRAFT)])
        assert summary.over_liquidated == Decimal("0")
        assert summary.total_liquidated == Decimal("0")
        assert summary.liquidation_status == LiquidationStatus.PENDING
        assert summarize(parent, []).liquidation_status == LiquidationStatus.NO

    def test_settlement_not_counted_as_spend(self):
        parent = make_voucher(TransactionType.BUDGET_REQUEST, amount="1000")
        refund = refund_of(parent, "400")
        summary = summarize(parent, [child_of(parent, "600", VoucherStatus.POSTED), refund])
        assert summary.total_liquidated == Decimal("600")
        assert summary.settlement_id == refund.id
        assert summary.liquidation_status == LiquidationStatus.PENDING

    @pytest.mark.parametrize(
        "spent, settlement_status, expected",
        [
            ("1000", None, LiquidationStatus.YES),
            ("600", None, LiquidationStatus.PENDING),
            ("600", VoucherStatus.POSTED, LiquidationStatus.YES),
            ("600", VoucherStatus.CANCELLED, LiquidationStatus.PENDING),
        ],
    )
    def test_liquidation_status(self, spent, settlement_status, expected):
        parent = make_voucher(TransactionType.CASH_ADVANCE, amount="1000")
        children = [child_of(parent, spent, VoucherStatus.POSTED)]
        if settlement_status is not None:
            children.append(refund_of(parent, "400", settlement_status))
        assert summarize(parent, children).liquidation_status == expected


class TestPlanSettlement:

    def test_underspend_returns_funds(self):
        parent = make_voucher(TransactionType.BUDGET_REQUEST, amount="50000")
        plan = plan_settlement(parent, [child_of(parent, "20000", VoucherStatus.POSTED)])
        assert plan.transaction_type == TransactionType.COLLECTION
        assert plan.amount == Decimal("30000")
        assert plan.sub_category == RETURN_OF_FUNDS
        assert plan.expense_category == "Liquidation"
        assert plan.parent_id == parent.id

    def test_overspend_is_reimbursed(self):
        parent = make_voucher(TransactionType.CASH_ADVANCE, amount="1000")
        plan = plan_settlement(
            parent,
            [child_of(parent, "800", VoucherStatus.POSTED), child_of(parent, "450", VoucherStatus.POSTED)],
        )
        assert plan.transaction_type == TransactionType.REIMBURSEMENT
        assert plan.amount == Decimal("250")
        assert plan.sub_category == "Reimbursement"

    @pytest.mark.parametrize(
        "children, fragment",
        [
            (lambda p: [], "no Posted expense"),
            (lambda p: [child_of(p, "5", VoucherStatus.POSTED), child_of(p, "5", VoucherStatus.PENDING)], "awaiting"),
            (lambda p: [child_of(p, "1000", VoucherStatus.POSTED)], "balanced"),
            (lambda p: [child_of(p, "600", VoucherStatus.POSTED), refund_of(p, "400")], "already settled"),
        ],
    )
    def test_refusals(self, children, fragment):
        parent = make_voucher(TransactionType.BUDGET_REQUEST, amount="1000")
        with pytest.raises(IneligibleItemError, match=fragment) as exc_info:
            plan_settlement(parent, children(parent))
        assert exc_info.value.voucher_ids == (str(parent.id),)

    def test_cancelled_settlement_can_be_replaced(self):
        parent = make_voucher(TransactionType.BUDGET_REQUEST, amount="1000")
        children = [
            child_of(parent, "600", VoucherStatus.POSTED),
            refund_of(parent, "400", VoucherStatus.CANCELLED),
        ]
        assert plan_settlement(parent, children).amount == Decimal("400")

    def test_parent_must_be_posted(self):
        parent = make_voucher(TransactionType.BUDGET_REQUEST, status=VoucherStatus.PENDING)
        with pytest.raises(InvalidParentError):
            plan_settlement(parent, [])
