"""
Tests for counting policy loading and validation.

Covers:
- The shipped default policy
- Decimal parsing from quoted and unquoted YAML numbers
- Rejection of inconsistent thresholds, bounds and workflows
- STOCK_CONFIG_TRACE emission and checksum stability
"""

import copy
import json
import logging
from decimal import Decimal
from io import StringIO
from pathlib import Path

import pytest
import yaml

import stock_config
from stock_config import get_active_policy
from stock_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_decimal,
    parse_policy,
)
from stock_kernel.exceptions import ConfigurationError, UnknownWorkflowError
from stock_kernel.logging_config import StructuredFormatter, configure_logging

DEFAULT_PATH = Path(stock_config.__file__).parent / "sets" / "default.yaml"


@pytest.fixture
def raw_policy():
    return load_yaml_file(DEFAULT_PATH)


class TestDefaultPolicy:
    def test_thresholds(self, policy):
        assert policy.name == "default"
        assert policy.variance.warning == Decimal("0.15")
        assert policy.variance.critical == Decimal("0.50")
        assert policy.variance.epsilon == Decimal("0.001")
        assert policy.empty_container_epsilon_grams == Decimal("10")
        assert policy.keg_density_kg_per_liter == Decimal("1.01")
        assert policy.keg_nearly_empty_percentage == Decimal("5")

    def test_lifecycle_settings(self, policy):
        assert policy.verification_window_days == 180
        assert policy.verification_grace_days == 30
        assert policy.history_limit == 20
        assert policy.outlier_min_history == 5
        assert policy.auto_commit_low_severity is False

    def test_all_workflows(self, policy):
        assert {w.workflow for w in policy.workflows} == {
            "unit_count", "container_weight", "bottle_hybrid", "keg_weight", "batch_weight",
        }
        keg = policy.workflow_def("keg_weight")
        assert keg.bounds.min_weight_grams == Decimal("5000")
        assert keg.bounds.max_weight_grams == Decimal("80000")

    def test_checksum_is_sha256(self, policy):
        assert len(policy.checksum) == 64


class TestParsing:
    def test_decimal_from_string(self):
        assert parse_decimal("0.15", "x") == Decimal("0.15")

    def test_decimal_from_float_uses_repr(self):
        assert parse_decimal(0.1, "x") == Decimal("0.1")

    def test_bool_is_not_a_number(self):
        with pytest.raises(ConfigurationError, match="expected a number"):
            parse_decimal(True, "flag")

    def test_garbage_is_not_a_number(self):
        with pytest.raises(ConfigurationError, match="variance.warning"):
            parse_decimal("fifteen", "variance.warning")

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})


class TestValidation:
    def test_warning_must_be_below_critical(self, raw_policy):
        raw_policy["variance"]["warning"] = "0.6"

        with pytest.raises(ConfigurationError, match="warning < critical"):
            parse_policy(raw_policy)

    def test_epsilon_must_be_positive(self, raw_policy):
        raw_policy["variance"]["epsilon"] = "0"

        with pytest.raises(ConfigurationError, match="epsilon"):
            parse_policy(raw_policy)

    def test_missing_workflow(self, raw_policy):
        del raw_policy["workflows"]["keg_weight"]

        with pytest.raises(ConfigurationError, match="keg_weight"):
            parse_policy(raw_policy)

    def test_unknown_workflow(self, raw_policy):
        raw_policy["workflows"]["pallet_scan"] = {"required_fields": ["barcode"]}

        with pytest.raises(UnknownWorkflowError):
            parse_policy(raw_policy)

    def test_empty_required_fields(self, raw_policy):
        raw_policy["workflows"]["unit_count"]["required_fields"] = []

        with pytest.raises(ConfigurationError, match="required_fields"):
            parse_policy(raw_policy)

    def test_inverted_bounds(self, raw_policy):
        raw_policy["workflows"]["keg_weight"]["bounds"]["min_weight_grams"] = "90000"

        with pytest.raises(ConfigurationError, match="exceeds max"):
            parse_policy(raw_policy)

    @pytest.mark.parametrize("grace", [-1, 180, 365, "thirty"])
    def test_grace_outside_window(self, raw_policy, grace):
        raw_policy["verification"]["grace_days"] = grace

        with pytest.raises(ConfigurationError, match="grace_days"):
            parse_policy(raw_policy)

    def test_history_limit_must_be_positive(self, raw_policy):
        raw_policy["history_limit"] = 0

        with pytest.raises(ConfigurationError, match="history_limit"):
            parse_policy(raw_policy)

    def test_nearly_empty_is_a_percentage(self, raw_policy):
        raw_policy["anomalies"]["keg_nearly_empty_percentage"] = "150"

        with pytest.raises(ConfigurationError, match="keg_nearly_empty_percentage"):
            parse_policy(raw_policy)

    def test_density_must_be_positive(self, raw_policy):
        raw_policy["keg_density_kg_per_liter"] = "0"

        with pytest.raises(ConfigurationError, match="density"):
            parse_policy(raw_policy)

    def test_defaults_fill_missing_sections(self, raw_policy):
        minimal = {"name": "minimal", "workflows": copy.deepcopy(raw_policy["workflows"])}

        policy = parse_policy(minimal)

        assert policy.variance.warning == Decimal("0.15")
        assert policy.verification_window_days == 180
        assert policy.outlier_z_score == Decimal("3")


class TestGetActivePolicy:
    def test_custom_path(self, raw_policy, tmp_path):
        raw_policy["name"] = "strict"
        raw_policy["variance"]["warning"] = "0.05"
        raw_policy["auto_commit_low_severity"] = True
        path = tmp_path / "strict.yaml"
        path.write_text(yaml.safe_dump(raw_policy))

        policy = get_active_policy(path)

        assert policy.name == "strict"
        assert policy.variance.warning == Decimal("0.05")
        assert policy.auto_commit_low_severity is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_policy(tmp_path / "absent.yaml")

    def test_config_trace_logged(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        configure_logging(handler=handler)

        policy = get_active_policy()

        records = [json.loads(line) for line in stream.getvalue().splitlines() if line]
        trace = next(r for r in records if r["message"] == "STOCK_CONFIG_TRACE")
        assert trace["logger"] == "stock_kernel.config"
        assert trace["checksum"] == policy.checksum
        assert trace["workflow_count"] == 5

    def test_same_file_same_checksum(self):
        assert get_active_policy().checksum == get_active_policy().checksum
