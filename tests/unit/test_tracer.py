"""Tests for the engine tracer decorator and input fingerprints."""

from dataclasses import dataclass

import pytest

from ledger_engines.tracer import compute_input_fingerprint, traced_engine
from ledger_kernel.domain.voucher import VoucherStatus
from ledger_kernel.exceptions import IneligibleItemError


@dataclass(frozen=True)
class Sample:
    reference: str
    amount: int


class TestFingerprint:

    def test_stable_and_short(self):
        first = compute_input_fingerprint(("ref",), {"ref": "SOA-1"})
        assert first == compute_input_fingerprint(("ref",), {"ref": "SOA-1"})
        assert len(first) == 16

    def test_depends_on_selected_fields_only(self):
        base = compute_input_fingerprint(("ref",), {"ref": "SOA-1", "other": 1})
        assert base == compute_input_fingerprint(("ref",), {"ref": "SOA-1", "other": 2})
        assert base != compute_input_fingerprint(("ref",), {"ref": "SOA-2"})

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("ref",), {}) == compute_input_fingerprint(
            ("ref",), {"ref": None}
        )

    def test_dict_order_and_dataclasses(self):
        assert compute_input_fingerprint(("m",), {"m": {"a": 1, "b": 2}}) == compute_input_fingerprint(
            ("m",), {"m": {"b": 2, "a": 1}}
        )
        assert compute_input_fingerprint(("s",), {"s": Sample("x", 1)}) == compute_input_fingerprint(
            ("s",), {"s": {"reference": "x", "amount": 1}}
        )
        assert compute_input_fingerprint(("e",), {"e": VoucherStatus.DRAFT}) == compute_input_fingerprint(
            ("e",), {"e": "Draft"}
        )


class TestTracedEngine:

    def test_emits_trace_and_returns_result(self, captured_logs):
        @traced_engine("sample", "2.1", fingerprint_fields=("reference",))
        def double(value, reference=None):
            return value * 2

        assert double(21, reference="SOA-1") == 42

        record = next(r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE")
        assert record["engine_name"] == "sample"
        assert record["engine_version"] == "2.1"
        assert record["input_fingerprint"] == compute_input_fingerprint(
            ("reference",), {"reference": "SOA-1"}
        )
        assert record["duration_ms"] >= 0

    def test_preserves_metadata(self):
        @traced_engine("sample", "1.0")
        def documented():
            """Docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."

    def test_positional_and_keyword_calls_agree(self, captured_logs):
        @traced_engine("sample", "1.0", fingerprint_fields=("reference", "currency"))
        def plan(members, reference, currency="PHP"):
            return len(members)

        plan([], "SOA-20250314-001")
        plan([], reference="SOA-20250314-001", currency="PHP")

        first, second = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"]
        assert first["input_fingerprint"] == second["input_fingerprint"]
        assert first["input_fingerprint"] == compute_input_fingerprint(
            ("reference", "currency"), {"reference": "SOA-20250314-001", "currency": "PHP"}
        )

    def test_refusal_traced_and_reraised(self, captured_logs):
        @traced_engine("sample", "1.0")
        def refuse():
            raise IneligibleItemError(["v-1"], "billing is not yet on a statement")

        with pytest.raises(IneligibleItemError):
            refuse()

        record = next(r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE")
        assert record["outcome"] == "error"
        assert record["error_code"] == IneligibleItemError.code
        assert record["duration_ms"] >= 0

    def test_success_outcome(self, captured_logs):
        @traced_engine("sample", "1.0")
        def noop():
            return None

        noop()
        record = next(r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE")
        assert record["outcome"] == "ok"
        assert "error_code" not in record
