"""
Counting policy schema (``stock_config.schema``).

Responsibility
--------------
Frozen dataclasses for the human-authored counting policy: variance
thresholds, anomaly tolerances, verification windows and per-workflow
field/bounds definitions.  Every tunable threshold the engines consult
lives here; none is hard-coded in a rule.

Architecture position
---------------------
**Config layer** -- pure data.  Produced by ``stock_config.loader``;
consumed by ``stock_engines`` and the kernel services.

Invariants enforced
-------------------
* All numeric thresholds are ``Decimal``.
* ``0 < warning < critical`` for variance thresholds (checked by the loader).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class VarianceThresholds:
    """Relative change between consecutive committed counts.

    Both thresholds are exclusive: a ratio equal to ``warning`` is not an
    anomaly.
    """

    warning: Decimal = Decimal("0.15")
    critical: Decimal = Decimal("0.50")
    epsilon: Decimal = Decimal("0.001")


@dataclass(frozen=True)
class WorkflowBoundsDef:
    min_weight_grams: Decimal | None = None
    max_weight_grams: Decimal | None = None
    min_count: Decimal | None = None
    max_count: Decimal | None = None


@dataclass(frozen=True)
class WorkflowFieldsDef:
    workflow: str
    display_name: str
    required_fields: tuple[str, ...]
    optional_fields: tuple[str, ...] = ()
    bounds: WorkflowBoundsDef = WorkflowBoundsDef()


@dataclass(frozen=True)
class CountingPolicy:
    """The complete, validated counting policy."""

    name: str
    version: int
    variance: VarianceThresholds = VarianceThresholds()
    empty_container_epsilon_grams: Decimal = Decimal("10")
    keg_density_kg_per_liter: Decimal = Decimal("1.01")
    keg_nearly_empty_percentage: Decimal = Decimal("5")
    default_keg_freshness_days: int = 14
    outlier_z_score: Decimal = Decimal("3")
    outlier_min_history: int = 5
    history_limit: int = 20
    verification_window_days: int = 180
    verification_grace_days: int = 30
    auto_commit_low_severity: bool = False
    workflows: tuple[WorkflowFieldsDef, ...] = ()
    checksum: str = ""

    def workflow_def(self, workflow: str) -> WorkflowFieldsDef | None:
        for definition in self.workflows:
            if definition.workflow == workflow:
                return definition
        return None
