"""
Anomaly value objects.

An Anomaly is a flagged condition on a candidate count.  Anomalies never
block silently: every one carries a human-readable message and a
suggested action, and a confidence score fixed per anomaly type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class AnomalyType(str, Enum):
    MISSING_REQUIRED_FIELD = "missing_required_field"
    EMPTY_CONTAINER = "empty_container"
    WEIGHT_OUT_OF_BOUNDS = "weight_out_of_bounds"
    IMPOSSIBLE_WEIGHT = "impossible_weight"
    QUANTITY_OUT_OF_BOUNDS = "quantity_out_of_bounds"
    SIGNIFICANT_VARIANCE = "significant_variance"
    CONTAINER_VERIFICATION_OVERDUE = "container_verification_overdue"
    KEG_FRESHNESS_EXPIRED = "keg_freshness_expired"
    KEG_TEMPERATURE_OUT_OF_RANGE = "keg_temperature_out_of_range"
    BATCH_EXPIRED = "batch_expired"
    KEG_NEARLY_EMPTY = "keg_nearly_empty"
    OUTLIER_WEIGHT = "outlier_weight"


class AnomalySeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Sort key: critical first."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AnomalySeverity.CRITICAL: 0,
    AnomalySeverity.WARNING: 1,
    AnomalySeverity.INFO: 2,
}


@dataclass(frozen=True)
class Anomaly:
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    message: str
    suggested_action: str
    confidence_score: Decimal
    details: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if not (Decimal("0") <= self.confidence_score <= Decimal("1")):
            raise ValueError(
                f"confidence_score must be within [0, 1], got {self.confidence_score}"
            )

    @property
    def is_critical(self) -> bool:
        return self.severity is AnomalySeverity.CRITICAL


def has_critical(anomalies: tuple[Anomaly, ...]) -> bool:
    return any(a.is_critical for a in anomalies)
