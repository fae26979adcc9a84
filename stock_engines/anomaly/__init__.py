"""Rule-based anomaly detection for candidate counts."""

from stock_engines.anomaly.detector import AnomalyDetector
from stock_engines.anomaly.rules import (
    ANOMALY_RULES,
    CONFIDENCE,
    DetectionContext,
    check_required_fields,
)

__all__ = [
    "ANOMALY_RULES",
    "CONFIDENCE",
    "AnomalyDetector",
    "DetectionContext",
    "check_required_fields",
]
