"""
Policy loader (``stock_config.loader``).

Responsibility
--------------
Loads a YAML policy file and parses it into a frozen ``CountingPolicy``.
Runtime callers go through ``stock_config.get_active_policy()``; the
parse functions are exposed for tests and tooling.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Numbers are parsed through ``str`` into ``Decimal``; a YAML float never
  reaches the engines as a binary float.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Inconsistent or out-of-range values  -> ``ConfigurationError``.
* Unknown workflow tag  -> ``UnknownWorkflowError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    CountingPolicy,
    VarianceThresholds,
    WorkflowBoundsDef,
    WorkflowFieldsDef,
)
from stock_kernel.domain.items import CountingWorkflow
from stock_kernel.exceptions import ConfigurationError, UnknownWorkflowError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a YAML scalar into a Decimal via its string form."""
    if isinstance(value, bool):
        raise ConfigurationError(f"{field_name}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ConfigurationError(f"{field_name}: expected a number, got {value!r}") from exc


def _optional_decimal(data: dict[str, Any], key: str, prefix: str) -> Decimal | None:
    value = data.get(key)
    return None if value is None else parse_decimal(value, f"{prefix}.{key}")


def parse_variance(data: dict[str, Any]) -> VarianceThresholds:
    thresholds = VarianceThresholds(
        warning=parse_decimal(data.get("warning", "0.15"), "variance.warning"),
        critical=parse_decimal(data.get("critical", "0.50"), "variance.critical"),
        epsilon=parse_decimal(data.get("epsilon", "0.001"), "variance.epsilon"),
    )
    if not (Decimal("0") < thresholds.warning < thresholds.critical):
        raise ConfigurationError(
            f"variance thresholds must satisfy 0 < warning < critical, "
            f"got warning={thresholds.warning} critical={thresholds.critical}"
        )
    if thresholds.epsilon <= 0:
        raise ConfigurationError("variance.epsilon must be positive")
    return thresholds


def parse_bounds(data: dict[str, Any], prefix: str) -> WorkflowBoundsDef:
    bounds = WorkflowBoundsDef(
        min_weight_grams=_optional_decimal(data, "min_weight_grams", prefix),
        max_weight_grams=_optional_decimal(data, "max_weight_grams", prefix),
        min_count=_optional_decimal(data, "min_count", prefix),
        max_count=_optional_decimal(data, "max_count", prefix),
    )
    pairs = (
        (bounds.min_weight_grams, bounds.max_weight_grams, "weight"),
        (bounds.min_count, bounds.max_count, "count"),
    )
    for low, high, label in pairs:
        if low is not None and high is not None and low > high:
            raise ConfigurationError(f"{prefix}: min {label} {low} exceeds max {high}")
    return bounds


def parse_workflow(tag: str, data: dict[str, Any]) -> WorkflowFieldsDef:
    """Parse one entry of the ``workflows`` mapping."""
    try:
        CountingWorkflow(tag)
    except ValueError as exc:
        raise UnknownWorkflowError(tag) from exc
    required = tuple(data.get("required_fields") or ())
    if not required:
        raise ConfigurationError(f"workflows.{tag}: required_fields must not be empty")
    return WorkflowFieldsDef(
        workflow=tag,
        display_name=data.get("display_name", tag),
        required_fields=required,
        optional_fields=tuple(data.get("optional_fields") or ()),
        bounds=parse_bounds(data.get("bounds") or {}, f"workflows.{tag}.bounds"),
    )


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{key} must be a positive integer, got {value!r}")
    return value


def parse_policy(data: dict[str, Any]) -> CountingPolicy:
    """
    Parse a ``CountingPolicy`` from a dict.

    Raises:
        ConfigurationError: on any inconsistent value.
        KeyError: if ``name`` is absent.
    """
    workflows_data = data.get("workflows") or {}
    workflows = tuple(parse_workflow(tag, wf or {}) for tag, wf in workflows_data.items())
    missing = {w.value for w in CountingWorkflow} - {w.workflow for w in workflows}
    if missing:
        raise ConfigurationError(
            f"policy does not define workflows: {', '.join(sorted(missing))}"
        )

    anomalies = data.get("anomalies") or {}
    verification = data.get("verification") or {}
    grace = verification.get("grace_days", 30)
    window = _positive_int(verification, "window_days", 180)
    if isinstance(grace, bool) or not isinstance(grace, int) or not (0 <= grace < window):
        raise ConfigurationError(
            f"verification.grace_days must be within [0, window_days), got {grace!r}"
        )

    nearly_empty = parse_decimal(
        anomalies.get("keg_nearly_empty_percentage", "5"),
        "anomalies.keg_nearly_empty_percentage",
    )
    if not (Decimal("0") <= nearly_empty <= Decimal("100")):
        raise ConfigurationError("anomalies.keg_nearly_empty_percentage must be within [0, 100]")

    density = parse_decimal(data.get("keg_density_kg_per_liter", "1.01"), "keg_density_kg_per_liter")
    if density <= 0:
        raise ConfigurationError("keg_density_kg_per_liter must be positive")

    return CountingPolicy(
        name=data["name"],
        version=int(data.get("version", 1)),
        variance=parse_variance(data.get("variance") or {}),
        empty_container_epsilon_grams=parse_decimal(
            anomalies.get("empty_container_epsilon_grams", "10"),
            "anomalies.empty_container_epsilon_grams",
        ),
        keg_density_kg_per_liter=density,
        keg_nearly_empty_percentage=nearly_empty,
        default_keg_freshness_days=_positive_int(data, "default_keg_freshness_days", 14),
        outlier_z_score=parse_decimal(
            anomalies.get("outlier_z_score", "3"), "anomalies.outlier_z_score"
        ),
        outlier_min_history=_positive_int(anomalies, "outlier_min_history", 5),
        history_limit=_positive_int(data, "history_limit", 20),
        verification_window_days=window,
        verification_grace_days=grace,
        auto_commit_low_severity=bool(data.get("auto_commit_low_severity", False)),
        workflows=workflows,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
