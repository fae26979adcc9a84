"""
stock_config -- single public entrypoint for the counting policy.

Responsibility:
    Provides the ONLY way to obtain the counting policy at runtime through
    ``get_active_policy()``.  Engines and services receive the returned
    ``CountingPolicy`` by injection and never read YAML themselves.

Failure modes:
    - ``FileNotFoundError`` -- policy file does not exist.
    - ``ConfigurationError`` -- a value is missing, malformed or inconsistent.

Audit relevance:
    Every successful ``get_active_policy()`` call emits a
    ``STOCK_CONFIG_TRACE`` log entry with the policy name, version and
    checksum, tying every committed count to the policy that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from stock_config.loader import load_yaml_file, parse_policy
from stock_config.schema import (
    CountingPolicy,
    VarianceThresholds,
    WorkflowBoundsDef,
    WorkflowFieldsDef,
)

_logger = logging.getLogger("stock_kernel.config")

_DEFAULT_POLICY_PATH = Path(__file__).parent / "sets" / "default.yaml"

__all__ = [
    "CountingPolicy",
    "VarianceThresholds",
    "WorkflowBoundsDef",
    "WorkflowFieldsDef",
    "get_active_policy",
]


def get_active_policy(path: Path | None = None) -> CountingPolicy:
    """Load, validate and return the counting policy.

    Args:
        path: Override path to a policy YAML file.  Defaults to
            ``stock_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the policy file does not exist.
        ConfigurationError: If validation fails.
    """
    policy_path = path or _DEFAULT_POLICY_PATH
    policy = parse_policy(load_yaml_file(policy_path))

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "policy_name": policy.name,
            "policy_version": policy.version,
            "checksum": policy.checksum,
            "workflow_count": len(policy.workflows),
            "auto_commit_low_severity": policy.auto_commit_low_severity,
        },
    )
    return policy
