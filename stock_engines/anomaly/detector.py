"""
stock_engines.anomaly.detector -- Ordered, deterministic anomaly detection.

Responsibility:
    Run every rule in ``ANOMALY_RULES`` against a detection context and
    return the combined anomalies sorted by severity (critical first),
    then by rule order.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consumed by the
    reconciliation service.

Invariants enforced:
    - Determinism: identical contexts produce identical tuples, in
      content and order.
    - The detector never mutates the context or any lifecycle state.
"""

from __future__ import annotations

from stock_config.schema import CountingPolicy
from stock_engines.anomaly.rules import ANOMALY_RULES, DetectionContext, Rule
from stock_engines.tracer import traced_engine
from stock_kernel.domain.anomaly import Anomaly
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.anomaly")


class AnomalyDetector:
    """Evaluates the rule set for one candidate count at a time."""

    def __init__(self, policy: CountingPolicy, rules: tuple[Rule, ...] = ANOMALY_RULES):
        self._policy = policy
        self._rules = rules

    @property
    def policy(self) -> CountingPolicy:
        return self._policy

    @traced_engine("anomaly_detector", "1.0")
    def detect(self, context: DetectionContext) -> tuple[Anomaly, ...]:
        found: list[tuple[int, int, Anomaly]] = []
        for rule_index, rule in enumerate(self._rules):
            for anomaly in rule(context):
                found.append((anomaly.severity.rank, rule_index, anomaly))

        # sort is stable: same-rule anomalies keep emission order
        found.sort(key=lambda entry: (entry[0], entry[1]))
        anomalies = tuple(entry[2] for entry in found)

        if anomalies:
            logger.info(
                "anomalies_detected",
                extra={
                    "item_id": context.item.item_id,
                    "submission_id": str(context.submission.submission_id),
                    "anomaly_types": [a.anomaly_type.value for a in anomalies],
                    "critical_count": sum(1 for a in anomalies if a.is_critical),
                },
            )
        return anomalies
