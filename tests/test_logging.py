"""
Tests for ledger_kernel.logging_config.

- JSON line shape, context merge order and value encoding (Decimal, Enum)
- Ledger errors rendered as a nested ``error`` object
- Masking of payment details passed as ``extra``
- LogContext binding, including voucher snapshots
- configure_logging / reset_logging only touching their own handler
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ledger_kernel.domain.voucher import (
    BillingDetails,
    BillingStatus,
    LinkedBilling,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from ledger_kernel.exceptions import InvalidTransitionError, OverAllocationError
from ledger_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def emit():
    """Log one record through a private JSON handler and return it parsed."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = get_logger("tests.logging")
    logger.addHandler(handler)
    previous = logger.level
    logger.setLevel(logging.DEBUG)

    def _emit(message, level=logging.INFO, **kwargs):
        stream.seek(0)
        stream.truncate()
        logger.log(level, message, **kwargs)
        return json.loads(stream.getvalue().strip().splitlines()[-1])

    yield _emit
    logger.removeHandler(handler)
    logger.setLevel(previous)


def billing_snapshot(reference="SOA-20250314-001") -> Voucher:
    return Voucher(
        id=uuid4(),
        voucher_number="INV-2025-007",
        transaction_type=TransactionType.BILLING,
        source_module="billing",
        amount=Decimal("10000.00"),
        currency="PHP",
        purpose="Progress billing",
        requestor_id="emp-001",
        requestor_name="Maria Santos",
        status=VoucherStatus.PENDING,
        payload=BillingDetails(BillingStatus.BILLED, Decimal("10000.00"), reference),
    )


class TestLineShape:

    def test_base_fields(self, emit):
        record = emit("statement_generated")
        assert record["message"] == "statement_generated"
        assert record["level"] == "INFO"
        assert record["logger"] == "ledger_kernel.tests.logging"
        assert record["ts"].endswith("+00:00")

    def test_money_and_statuses_stay_exact(self, emit):
        record = emit(
            "collection_allocated",
            extra={
                "amount": Decimal("6000.10"),
                "to_status": VoucherStatus.POSTED,
                "billing_status": BillingStatus.PARTIAL,
                "due_date": date(2025, 4, 30),
            },
        )
        assert record["amount"] == "6000.10"
        assert record["to_status"] == "Posted"
        assert record["billing_status"] == "partial"
        assert record["due_date"] == "2025-04-30"

    def test_dataclasses_and_collections(self, emit):
        billing_id = uuid4()
        record = emit(
            "collection_lines",
            extra={
                "lines": (LinkedBilling(billing_id, Decimal("40")),),
                "roles": frozenset({"Executive", "Accounting"}),
            },
        )
        assert record["lines"] == [{"billing_id": str(billing_id), "amount": "40"}]
        assert record["roles"] == ["Accounting", "Executive"]

    def test_context_wins_over_extra(self, emit):
        with LogContext.bind(statement_reference="SOA-20250314-001"):
            record = emit("statement_generated", extra={"statement_reference": "SOA-OTHER"})
        assert record["statement_reference"] == "SOA-20250314-001"

    def test_bare_line_has_no_context(self, emit):
        record = emit("numbering_ready")
        assert not set(CONTEXT_FIELDS) & set(record)


class TestErrors:

    def test_ledger_error_is_nested(self, emit):
        billing_id = str(uuid4())
        try:
            raise OverAllocationError(billing_id, Decimal("600"), Decimal("400"))
        except OverAllocationError:
            record = emit("allocation_failed", level=logging.ERROR, exc_info=True)

        error = record["error"]
        assert error["type"] == "OverAllocationError"
        assert error["code"] == "OVER_ALLOCATION"
        assert error["retryable"] is False
        assert error["billing_id"] == billing_id
        assert error["requested"] == "600"
        assert error["remaining"] == "400"
        assert "Traceback" in record["traceback"]

    def test_transition_reason_logged(self, emit):
        try:
            raise InvalidTransitionError("v-1", "Draft", "cancel", "collection is already applied")
        except InvalidTransitionError:
            record = emit("cancel_refused", level=logging.WARNING, exc_info=True)
        assert record["error"]["reason"] == "collection is already applied"
        assert record["error"]["from_status"] == "Draft"

    def test_plain_exception(self, emit):
        try:
            raise ValueError("bad ledger file")
        except ValueError:
            record = emit("load_failed", level=logging.ERROR, exc_info=True)
        assert record["error"] == {"type": "ValueError", "message": "bad ledger file"}


class TestMasking:

    def test_payment_details_masked(self, emit):
        record = emit(
            "reimbursement_paid",
            extra={"bank_account": "0012-3456-7890", "tin": "123", "payee": "Maria Santos"},
        )
        assert record["bank_account"] == "****7890"
        assert record["tin"] == "****"
        assert record["payee"] == "Maria Santos"

    def test_custom_sensitive_fields(self):
        formatter = StructuredFormatter(sensitive_fields=frozenset({"payee"}))
        record = logging.LogRecord("ledger_kernel.x", logging.INFO, "", 0, "paid", (), None)
        record.payee = "Maria Santos"
        record.bank_account = "0012-3456-7890"
        line = json.loads(formatter.format(record))
        assert line["payee"] == "****ntos"
        assert line["bank_account"] == "0012-3456-7890"


class TestLogContext:

    def test_bind_nests_and_unwinds(self):
        with LogContext.bind(actor_id="acct-001", statement_reference="SOA-20250314-001"):
            with LogContext.bind(actor_id="acct-002"):
                assert LogContext.get_all() == {
                    "actor_id": "acct-002",
                    "statement_reference": "SOA-20250314-001",
                }
            assert LogContext.get_all()["actor_id"] == "acct-001"
        assert LogContext.get_all() == {}

    def test_values_are_strings_and_none_skipped(self):
        voucher_id = uuid4()
        with LogContext.bind(voucher_id=voucher_id, actor_id=None):
            assert LogContext.get_all() == {"voucher_id": str(voucher_id)}

    def test_unknown_field_refused(self):
        with pytest.raises(TypeError, match="billing_status"):
            LogContext.bind(billing_status="paid")

    def test_for_voucher(self, emit):
        billing = billing_snapshot()
        with LogContext.bind(actor_id="acct-001"), LogContext.for_voucher(billing):
            record = emit("voucher_transition")
        assert record["voucher_id"] == str(billing.id)
        assert record["voucher_number"] == "INV-2025-007"
        assert record["statement_reference"] == "SOA-20250314-001"
        assert record["actor_id"] == "acct-001"

    def test_set_and_clear(self):
        LogContext.set(correlation_id="req-42")
        LogContext.set(trace_id="t-1")
        assert LogContext.get_all() == {"correlation_id": "req-42", "trace_id": "t-1"}
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:

    @pytest.fixture(autouse=True)
    def _fresh(self):
        reset_logging()
        yield
        reset_logging()
        configure_logging(level=logging.DEBUG, stream=StringIO())

    def test_idempotent(self):
        first = logging.StreamHandler(StringIO())
        second = logging.StreamHandler(StringIO())
        assert configure_logging(handler=first) is first
        assert configure_logging(handler=second) is first

        handlers = logging.getLogger("ledger_kernel").handlers
        assert first in handlers
        assert second not in handlers
        assert isinstance(first.formatter, StructuredFormatter)

    def test_reset_keeps_foreign_handlers(self):
        foreign = logging.NullHandler()
        root = logging.getLogger("ledger_kernel")
        root.addHandler(foreign)
        try:
            installed = configure_logging(stream=StringIO())
            reset_logging()
            assert installed not in root.handlers
            assert foreign in root.handlers
        finally:
            root.removeHandler(foreign)

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LEDGER_LOG_LEVEL", "warning")
        configure_logging(stream=StringIO())
        assert logging.getLogger("ledger_kernel").level == logging.WARNING

    def test_unknown_level(self):
        with pytest.raises(ValueError, match="verbose"):
            configure_logging(level="verbose", stream=StringIO())

    def test_end_to_end(self):
        stream = StringIO()
        configure_logging(level="DEBUG", stream=stream)
        with LogContext.bind(statement_reference="SOA-20250314-002"):
            get_logger("services.workflow").debug("statement_finalized", extra={"posted": True})

        (line,) = [json.loads(x) for x in stream.getvalue().splitlines()]
        assert line["logger"] == "ledger_kernel.services.workflow"
        assert line["statement_reference"] == "SOA-20250314-002"
        assert line["posted"] is True
