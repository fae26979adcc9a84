"""
stock_engines.anomaly.rules -- One pure function per anomaly family.

Responsibility:
    Each rule inspects a ``DetectionContext`` and returns the anomalies of
    its own family (possibly none).  New anomaly families are added as new
    rule functions appended to ``ANOMALY_RULES``; existing rules are never
    special-cased inline.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Rules read the context
    only; they never mutate lifecycle state or touch storage.

Invariants enforced:
    - Confidence is fixed per anomaly type (``CONFIDENCE``), never computed.
    - Every clamp performed during conversion is surfaced by some rule
      (negative net weight, out-of-range partial bottles, capped keg fill).
    - Variance thresholds are exclusive: a ratio equal to the threshold
      is not an anomaly.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from stock_config.schema import CountingPolicy
from stock_engines.conversion import CountConversion, KegFreshnessStatus
from stock_engines.registry import WorkflowDefinition
from stock_kernel.domain.anomaly import Anomaly, AnomalySeverity, AnomalyType
from stock_kernel.domain.containers import (
    BatchState,
    ContainerInstance,
    KegState,
    VerificationStatus,
)
from stock_kernel.domain.items import InventoryItem
from stock_kernel.domain.records import CountRecord
from stock_kernel.domain.submissions import (
    BottleHybridSubmission,
    KegWeightSubmission,
    RawCountSubmission,
    UnitCountSubmission,
)

CONFIDENCE: dict[AnomalyType, Decimal] = {
    AnomalyType.MISSING_REQUIRED_FIELD: Decimal("1.0"),
    AnomalyType.EMPTY_CONTAINER: Decimal("0.95"),
    AnomalyType.WEIGHT_OUT_OF_BOUNDS: Decimal("0.9"),
    AnomalyType.IMPOSSIBLE_WEIGHT: Decimal("0.9"),
    AnomalyType.QUANTITY_OUT_OF_BOUNDS: Decimal("0.9"),
    AnomalyType.SIGNIFICANT_VARIANCE: Decimal("0.6"),
    AnomalyType.CONTAINER_VERIFICATION_OVERDUE: Decimal("1.0"),
    AnomalyType.KEG_FRESHNESS_EXPIRED: Decimal("0.8"),
    AnomalyType.KEG_TEMPERATURE_OUT_OF_RANGE: Decimal("0.7"),
    AnomalyType.BATCH_EXPIRED: Decimal("1.0"),
    AnomalyType.KEG_NEARLY_EMPTY: Decimal("0.9"),
    AnomalyType.OUTLIER_WEIGHT: Decimal("0.85"),
}


# densest food product a container is expected to hold, 1.2 kg/L
MAX_FOOD_DENSITY_G_PER_ML = Decimal("1.2")


def _fmt(value: Decimal, places: str = "0.1") -> str:
    return str(value.quantize(Decimal(places), rounding=ROUND_HALF_UP))


def make_anomaly(
    anomaly_type: AnomalyType,
    severity: AnomalySeverity,
    message: str,
    suggested_action: str,
    **details: object,
) -> Anomaly:
    return Anomaly(
        anomaly_type=anomaly_type,
        severity=severity,
        message=message,
        suggested_action=suggested_action,
        confidence_score=CONFIDENCE[anomaly_type],
        details=dict(details),
    )


@dataclass(frozen=True)
class DetectionContext:
    """Everything a rule may look at for one candidate count.

    ``history`` holds recent committed records for the item, most recent
    first; ``previous_record`` is the latest of them.
    """

    item: InventoryItem
    submission: RawCountSubmission
    conversion: CountConversion
    definition: WorkflowDefinition
    policy: CountingPolicy
    as_of: date
    container: ContainerInstance | None = None
    keg_state: KegState | None = None
    batch_state: BatchState | None = None
    previous_record: CountRecord | None = None
    history: tuple[CountRecord, ...] = ()


Rule = Callable[[DetectionContext], list[Anomaly]]


# ---------------------------------------------------------------------------
# Pre-conversion
# ---------------------------------------------------------------------------


def check_required_fields(workflow: str, missing_fields: tuple[str, ...]) -> tuple[Anomaly, ...]:
    """One critical anomaly per missing required field."""
    return tuple(
        make_anomaly(
            AnomalyType.MISSING_REQUIRED_FIELD,
            AnomalySeverity.CRITICAL,
            f"Required field '{name}' is missing for {workflow} counts",
            f"Provide '{name}' and resubmit the count.",
            field=name,
            workflow=workflow,
        )
        for name in missing_fields
    )


# ---------------------------------------------------------------------------
# Post-conversion rules, in evaluation order
# ---------------------------------------------------------------------------


def empty_container_rule(ctx: DetectionContext) -> list[Anomaly]:
    net = ctx.conversion.net
    if ctx.submission.container_ref is None or net is None:
        return []
    if Decimal("0") <= net.raw <= ctx.policy.empty_container_epsilon_grams:
        return [
            make_anomaly(
                AnomalyType.EMPTY_CONTAINER,
                AnomalySeverity.WARNING,
                f"Container appears empty ({_fmt(net.raw)}g net weight)",
                "If intentionally empty, proceed. Otherwise, check if product was forgotten.",
                net_weight_grams=str(net.raw),
                container_id=ctx.submission.container_ref,
            )
        ]
    return []


def weight_bounds_rule(ctx: DetectionContext) -> list[Anomaly]:
    conversion = ctx.conversion
    anomalies: list[Anomaly] = []
    gross = conversion.gross_weight_grams

    if gross is not None and conversion.net is not None and conversion.net.raw < 0:
        anomalies.append(
            make_anomaly(
                AnomalyType.WEIGHT_OUT_OF_BOUNDS,
                AnomalySeverity.CRITICAL,
                f"Measured weight ({_fmt(gross)}g) is less than tare weight "
                f"({_fmt(conversion.tare_weight_grams)}g)",
                "Check if correct container was scanned. Verify scale calibration.",
                gross_weight_grams=str(gross),
                tare_weight_grams=str(conversion.tare_weight_grams),
            )
        )
    elif gross is not None and not ctx.definition.bounds.weight_within(gross):
        bounds = ctx.definition.bounds
        anomalies.append(
            make_anomaly(
                AnomalyType.WEIGHT_OUT_OF_BOUNDS,
                AnomalySeverity.WARNING,
                f"Gross weight {_fmt(gross)}g is outside the expected range "
                f"{bounds.min_weight_grams}-{bounds.max_weight_grams}g",
                "Verify the scale reading and that the right item was weighed.",
                gross_weight_grams=str(gross),
            )
        )

    if conversion.bottles is not None:
        for index, partial in enumerate(conversion.bottles.partials):
            if partial.out_of_range:
                anomalies.append(
                    make_anomaly(
                        AnomalyType.WEIGHT_OUT_OF_BOUNDS,
                        AnomalySeverity.WARNING,
                        f"Partial bottle {index + 1} weighs {_fmt(partial.weight)}g, outside "
                        f"the empty-to-full range; counted as {partial.equivalent}",
                        "Re-weigh the bottle and check the item's bottle weights.",
                        partial_index=index,
                        weight_grams=str(partial.weight),
                        equivalent=str(partial.equivalent),
                    )
                )

    if conversion.keg is not None and conversion.keg.fill_capped:
        anomalies.append(
            make_anomaly(
                AnomalyType.WEIGHT_OUT_OF_BOUNDS,
                AnomalySeverity.WARNING,
                "Keg weight implies more beer than the keg holds; fill capped at 100%",
                "Check the keg size and empty keg weight configured for this item.",
                volume_liters=str(conversion.keg.volume_liters),
            )
        )
    return anomalies


def container_capacity_rule(ctx: DetectionContext) -> list[Anomaly]:
    """Net weight heavier than the container could hold at food density."""
    container = ctx.container
    net = ctx.conversion.net
    if container is None or container.max_capacity_ml is None or net is None:
        return []
    max_net = container.max_capacity_ml * MAX_FOOD_DENSITY_G_PER_ML
    if net.raw <= max_net:
        return []
    return [
        make_anomaly(
            AnomalyType.IMPOSSIBLE_WEIGHT,
            AnomalySeverity.WARNING,
            f"Net weight ({_fmt(net.raw, '1')}g) exceeds container capacity "
            f"({_fmt(container.max_capacity_ml, '1')}ml)",
            "Check if correct container type was scanned.",
            net_weight_grams=str(net.raw),
            max_net_weight_grams=str(max_net),
            container_id=container.container_id,
        )
    ]


def quantity_bounds_rule(ctx: DetectionContext) -> list[Anomaly]:
    match ctx.submission:
        case UnitCountSubmission(counted_quantity=count):
            label = "Counted quantity"
            count = Decimal(count)
        case BottleHybridSubmission(full_bottles_count=count):
            label = "Full bottle count"
            count = Decimal(count)
        case _:
            return []

    bounds = ctx.definition.bounds
    if bounds.count_within(count):
        return []
    return [
        make_anomaly(
            AnomalyType.QUANTITY_OUT_OF_BOUNDS,
            AnomalySeverity.WARNING,
            f"{label} {count} is outside the expected range {bounds.min_count}-{bounds.max_count}",
            "Recount and confirm the quantity.",
            count=str(count),
        )
    ]


def variance_rule(ctx: DetectionContext) -> list[Anomaly]:
    previous = ctx.previous_record
    if previous is None:
        return []
    thresholds = ctx.policy.variance
    candidate = ctx.conversion.quantity
    ratio = abs(candidate - previous.quantity) / max(previous.quantity, thresholds.epsilon)

    if ratio > thresholds.critical:
        severity = AnomalySeverity.CRITICAL
    elif ratio > thresholds.warning:
        severity = AnomalySeverity.WARNING
    else:
        return []

    percent = _fmt(ratio * 100)
    return [
        make_anomaly(
            AnomalyType.SIGNIFICANT_VARIANCE,
            severity,
            f"Count changed {percent}% since the last count "
            f"({previous.quantity} -> {candidate})",
            "Confirm the count or investigate waste, theft or unrecorded deliveries.",
            previous_quantity=str(previous.quantity),
            candidate_quantity=str(candidate),
            variance_ratio=str(ratio.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)),
        )
    ]


def verification_rule(ctx: DetectionContext) -> list[Anomaly]:
    container = ctx.container
    if container is None or container.verification_status is not VerificationStatus.OVERDUE:
        return []
    return [
        make_anomaly(
            AnomalyType.CONTAINER_VERIFICATION_OVERDUE,
            AnomalySeverity.WARNING,
            f"Container {container.container_id} verification is overdue; tare weight may be stale",
            "Re-verify the container's tare weight before relying on this count.",
            container_id=container.container_id,
            last_weighed_date=container.last_weighed_date.isoformat(),
        )
    ]


def keg_condition_rule(ctx: DetectionContext) -> list[Anomaly]:
    anomalies: list[Anomaly] = []
    freshness = ctx.conversion.freshness
    if freshness is not None and freshness.status is KegFreshnessStatus.EXPIRED:
        anomalies.append(
            make_anomaly(
                AnomalyType.KEG_FRESHNESS_EXPIRED,
                AnomalySeverity.WARNING,
                f"Keg was tapped {freshness.days_since_tap} days ago and is past its freshness window",
                "Taste-check the keg and consider replacing it.",
                days_since_tap=freshness.days_since_tap,
                ratio=str(freshness.ratio),
            )
        )

    submission = ctx.submission
    if isinstance(submission, KegWeightSubmission) and submission.temperature_celsius is not None:
        temp = submission.temperature_celsius
        low, high = ctx.item.keg_storage_temp_min, ctx.item.keg_storage_temp_max
        if (low is not None and temp < low) or (high is not None and temp > high):
            anomalies.append(
                make_anomaly(
                    AnomalyType.KEG_TEMPERATURE_OUT_OF_RANGE,
                    AnomalySeverity.INFO,
                    f"Keg temperature {temp}C is outside the storage range {low}-{high}C",
                    "Check the cooler temperature.",
                    temperature_celsius=str(temp),
                )
            )
    return anomalies


def batch_expiry_rule(ctx: DetectionContext) -> list[Anomaly]:
    use_by = ctx.conversion.use_by_date
    if use_by is None or ctx.as_of <= use_by:
        return []
    return [
        make_anomaly(
            AnomalyType.BATCH_EXPIRED,
            AnomalySeverity.CRITICAL,
            f"Batch passed its use-by date ({use_by.isoformat()})",
            "Discard the batch and record it as waste.",
            use_by_date=use_by.isoformat(),
            days_past=(ctx.as_of - use_by).days,
        )
    ]


def keg_level_rule(ctx: DetectionContext) -> list[Anomaly]:
    keg = ctx.conversion.keg
    if keg is None or keg.fill_percentage >= ctx.policy.keg_nearly_empty_percentage:
        return []
    return [
        make_anomaly(
            AnomalyType.KEG_NEARLY_EMPTY,
            AnomalySeverity.WARNING,
            f"Keg is nearly empty ({_fmt(keg.fill_percentage)}% remaining)",
            "Prepare a replacement keg.",
            fill_percentage=str(keg.fill_percentage),
        )
    ]


def outlier_rule(ctx: DetectionContext) -> list[Anomaly]:
    gross = ctx.conversion.gross_weight_grams
    if gross is None:
        return []
    weights = [r.gross_weight_grams for r in ctx.history if r.gross_weight_grams is not None]
    weights = weights[: ctx.policy.history_limit]
    if len(weights) < ctx.policy.outlier_min_history:
        return []

    n = Decimal(len(weights))
    mean = sum(weights, Decimal("0")) / n
    variance = sum(((w - mean) ** 2 for w in weights), Decimal("0")) / n
    std_dev = variance.sqrt()
    if std_dev == 0:
        return []
    z_score = abs(gross - mean) / std_dev
    if z_score <= ctx.policy.outlier_z_score:
        return []
    return [
        make_anomaly(
            AnomalyType.OUTLIER_WEIGHT,
            AnomalySeverity.WARNING,
            f"Weight is {_fmt(z_score)} standard deviations from historical average",
            f"Verify measurement. Historical average: {_fmt(mean, '1')}g",
            z_score=str(z_score.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)),
            mean_grams=str(mean.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)),
            sample_size=len(weights),
        )
    ]


ANOMALY_RULES: tuple[Rule, ...] = (
    empty_container_rule,
    weight_bounds_rule,
    container_capacity_rule,
    quantity_bounds_rule,
    variance_rule,
    verification_rule,
    keg_condition_rule,
    batch_expiry_rule,
    keg_level_rule,
    outlier_rule,
)
