"""
Tests for ledger_config: YAML loading, validation and the config bridges.
"""

from decimal import Decimal

import pytest
import yaml

from ledger_config import (
    CONFIG_PATH_ENV,
    DEFAULT_CONFIG_PATH,
    compute_checksum,
    get_active_config,
    parse_config,
)
from ledger_config.bridges import build_approval_authority
from ledger_config.loader import load_yaml_file
from ledger_kernel.domain.voucher import Actor, TransactionType


@pytest.fixture
def base_data():
    return load_yaml_file(DEFAULT_CONFIG_PATH)


def write_config(tmp_path, data, name="ledger.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:

    def test_bundled_defaults(self):
        config = get_active_config(DEFAULT_CONFIG_PATH)
        assert config.default_currency == "PHP"
        assert config.approval_authority["Accounting"] == ("*",)
        assert "Admin" in config.administrative_roles
        assert config.numbering.prefixes["expense"] == "EXP"
        assert config.numbering.statement_prefix == "SOA"
        assert config.numbering.sequence_width == 3
        assert config.reconciliation.paid_tolerance == Decimal("0.01")
        assert config.chain_for(TransactionType.EXPENSE) == ()
        assert config.source == str(DEFAULT_CONFIG_PATH)

    def test_config_is_frozen(self):
        config = get_active_config()
        with pytest.raises(AttributeError):
            config.default_currency = "USD"
        with pytest.raises(TypeError):
            config.approval_authority["Employee"] = ("*",)


class TestResolution:

    def test_environment_variable(self, tmp_path, monkeypatch, base_data):
        base_data["default_currency"] = "usd"
        path = write_config(tmp_path, base_data)
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))

        config = get_active_config()
        assert config.default_currency == "USD"
        assert config.source == str(path)

    def test_explicit_path_wins(self, tmp_path, monkeypatch, base_data):
        monkeypatch.setenv(CONFIG_PATH_ENV, str(tmp_path / "missing.yaml"))
        path = write_config(tmp_path, base_data)
        assert get_active_config(path).source == str(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml")

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            get_active_config(path)

    def test_load_is_logged(self, captured_logs):
        config = get_active_config()
        record = next(r for r in captured_logs() if r["message"] == "ledger_config_loaded")
        assert record["checksum"] == config.checksum
        assert record["approval_roles"] == ["Accounting", "Executive"]


class TestValidation:

    @pytest.mark.parametrize(
        "key, value, fragment",
        [
            ("approval_authority", {}, "approval_authority"),
            ("approval_authority", {"Accounting": ["invoice"]}, "unknown transaction type"),
            ("approval_chains", {"expense": []}, "must not be empty"),
            ("approval_chains", {"*": ["Accounting"]}, "does not accept"),
            ("numbering", {"sequence_width": 0}, "sequence_width"),
            ("numbering", {"prefixes": {"expense": " "}}, "prefixes.expense"),
            ("reconciliation", {"paid_tolerance": "-1"}, "paid_tolerance"),
            ("reconciliation", {"paid_tolerance": "lots"}, "paid_tolerance"),
            ("default_currency", "PESO", "default_currency"),
        ],
    )
    def test_invalid_values(self, base_data, key, value, fragment):
        base_data[key] = value
        with pytest.raises(ValueError, match=fragment):
            parse_config(base_data)

    def test_optional_sections_default(self):
        config = parse_config({"approval_authority": {"Accounting": "*"}})
        assert config.approval_authority["Accounting"] == ("*",)
        assert config.numbering.prefixes["billing"] == "INV"
        assert config.approval_chains == {}

    def test_chains_parsed(self, base_data):
        base_data["approval_chains"] = {"budget_request": ["Manager", "Executive"]}
        config = parse_config(base_data)
        assert config.chain_for("budget_request") == ("Manager", "Executive")
        assert config.chain_for(TransactionType.BUDGET_REQUEST) == ("Manager", "Executive")


class TestChecksum:

    def test_deterministic_and_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_changes_with_content(self, base_data):
        original = parse_config(base_data).checksum
        base_data["default_currency"] = "USD"
        assert parse_config(base_data).checksum != original


class TestBridges:

    def test_authority_from_config(self, make_config):
        config = make_config(
            approval_authority={"Accounting": ["*"], "Manager": ["expense"]},
            administrative_roles=["Accounting"],
        )
        authority = build_approval_authority(config)
        manager = Actor("mgr-1", "Dan Go", "Manager")
        assert authority.can_approve(manager, TransactionType.EXPENSE)
        assert not authority.can_approve(manager, TransactionType.BILLING)
        assert not authority.is_administrative(manager)
        assert authority.is_administrative(Actor("a-1", "Ana", "Accounting"))
