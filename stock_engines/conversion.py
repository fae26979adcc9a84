"""
stock_engines.conversion -- Unit conversion and equivalent calculators.

Responsibility:
    Turn raw physical measurements (gross weights, bottle counts, partial
    bottle weights, keg weights, tap dates) into a single canonical
    quantity in the item's recipe unit, plus the intermediate figures the
    anomaly detector inspects.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Receives ``as_of`` from
    the caller; never reads the clock.  Consumed by the anomaly detector
    and the reconciliation service.

Invariants enforced:
    - Purity: identical inputs produce identical outputs.
    - Net weight fed into any division is never negative; the raw
      (possibly negative) net is retained for anomaly detection.
    - Bottle equivalents are clamped to [0, 1]; clamping is reported via
      ``out_of_range`` and never happens silently.
    - Decimal only; results are quantized to ``QUANTITY_PRECISION``.

Failure modes:
    - ``MissingItemParameterError`` (a ``ConfigurationError``) when a
      physical parameter the active workflow needs is unset, zero or
      negative.
    - ``ConfigurationError`` when ``full_bottle_weight <= empty_bottle_weight``
      or the freshness window is not positive.

Usage:
    from stock_engines.conversion import quantity_from_weight

    result = quantity_from_weight(Decimal("2350"), Decimal("850"), Decimal("1"))
    result.quantity  # Decimal("1500.0000")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from stock_engines.tracer import traced_engine
from stock_kernel.domain.containers import BatchState, ContainerInstance, KegState
from stock_kernel.domain.items import CountingWorkflow, InventoryItem
from stock_kernel.domain.submissions import (
    BatchWeightSubmission,
    BottleHybridSubmission,
    ContainerWeightSubmission,
    KegWeightSubmission,
    RawCountSubmission,
    UnitCountSubmission,
)
from stock_kernel.exceptions import (
    ConfigurationError,
    MissingItemParameterError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.conversion")

QUANTITY_PRECISION = Decimal("0.0001")
DEFAULT_KEG_DENSITY = Decimal("1.01")  # kg/L
DEFAULT_BATCH_LABEL_PATTERN = "{item_name}-{date}"

_ZERO = Decimal("0")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")


def _q(value: Decimal) -> Decimal:
    return value.quantize(QUANTITY_PRECISION, rounding=ROUND_HALF_UP)


def _require_positive(item: InventoryItem, name: str, value: Decimal | int | None) -> Decimal:
    if value is None:
        raise MissingItemParameterError(item.item_id, name)
    if value <= 0:
        raise MissingItemParameterError(item.item_id, name, f"must be positive, got {value}")
    return Decimal(value)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NetWeight:
    raw: Decimal
    clamped: Decimal

    @property
    def was_clamped(self) -> bool:
        return self.raw < 0


@dataclass(frozen=True)
class WeightQuantity:
    net: NetWeight
    unit_weight_grams: Decimal
    quantity: Decimal


@dataclass(frozen=True)
class BottleEquivalent:
    """One partial bottle.  ``weight`` is the raw reading, kept for audit."""

    weight: Decimal
    equivalent: Decimal
    out_of_range: bool


@dataclass(frozen=True)
class BottleQuantity:
    full_count: int
    partials: tuple[BottleEquivalent, ...]
    partial_total: Decimal
    total: Decimal


@dataclass(frozen=True)
class KegVolume:
    net: NetWeight
    volume_liters: Decimal
    fill_percentage: Decimal
    fill_capped: bool


class KegFreshnessStatus(str, Enum):
    FRESH = "fresh"
    GOOD = "good"
    DECLINING = "declining"
    EXPIRED = "expired"


@dataclass(frozen=True)
class KegFreshness:
    days_since_tap: int
    ratio: Decimal
    status: KegFreshnessStatus
    estimated_days_remaining: int


@dataclass(frozen=True)
class ConversionContext:
    """Lifecycle state and policy constants a conversion may consult."""

    as_of: date
    container: ContainerInstance | None = None
    keg_state: KegState | None = None
    batch_state: BatchState | None = None
    keg_density_kg_per_liter: Decimal = DEFAULT_KEG_DENSITY
    default_keg_freshness_days: int = 14


@dataclass(frozen=True)
class CountConversion:
    """Canonical quantity candidate plus the figures it was derived from."""

    workflow: CountingWorkflow
    quantity: Decimal
    gross_weight_grams: Decimal | None = None
    tare_weight_grams: Decimal | None = None
    net: NetWeight | None = None
    bottles: BottleQuantity | None = None
    keg: KegVolume | None = None
    freshness: KegFreshness | None = None
    batch_date: date | None = None
    use_by_date: date | None = None

    def details(self) -> dict[str, Any]:
        """JSON-safe summary for logs and outcome display."""
        out: dict[str, Any] = {"workflow": self.workflow.value, "quantity": str(self.quantity)}
        if self.net is not None:
            out["net_weight_grams"] = str(self.net.raw)
        if self.bottles is not None:
            out["full_bottles"] = self.bottles.full_count
            out["partial_equivalents"] = [str(p.equivalent) for p in self.bottles.partials]
        if self.keg is not None:
            out["volume_liters"] = str(self.keg.volume_liters)
            out["fill_percentage"] = str(self.keg.fill_percentage)
        if self.freshness is not None:
            out["freshness_status"] = self.freshness.status.value
            out["days_since_tap"] = self.freshness.days_since_tap
        if self.use_by_date is not None:
            out["use_by_date"] = self.use_by_date.isoformat()
        return out


# ---------------------------------------------------------------------------
# Calculators
# ---------------------------------------------------------------------------


@traced_engine("conversion.net_weight", "1.0", fingerprint_fields=("gross", "tare"))
def net_weight(gross: Decimal, tare: Decimal) -> NetWeight:
    """``gross - tare``, with a non-negative copy for use in division."""
    raw = gross - tare
    return NetWeight(raw=raw, clamped=max(_ZERO, raw))


@traced_engine(
    "conversion.quantity_from_weight", "1.0",
    fingerprint_fields=("gross", "tare", "unit_weight"),
)
def quantity_from_weight(
    gross: Decimal,
    tare: Decimal,
    unit_weight: Decimal | None,
) -> WeightQuantity:
    """Units held in a tared container.

    Raises:
        ConfigurationError: If ``unit_weight`` is unset, zero or negative.
    """
    if unit_weight is None or unit_weight <= 0:
        raise ConfigurationError(
            f"typical unit weight must be positive, got {unit_weight}"
        )
    net = net_weight(gross, tare)
    return WeightQuantity(
        net=net,
        unit_weight_grams=unit_weight,
        quantity=_q(net.clamped / unit_weight),
    )


@traced_engine(
    "conversion.bottle_equivalent", "1.0",
    fingerprint_fields=("weight", "empty_weight", "full_weight"),
)
def bottle_equivalent(
    weight: Decimal,
    empty_weight: Decimal,
    full_weight: Decimal,
) -> BottleEquivalent:
    """Fraction of a full bottle remaining, clamped to [0, 1]."""
    if full_weight <= empty_weight:
        raise ConfigurationError(
            f"full bottle weight {full_weight} must exceed empty weight {empty_weight}"
        )
    ratio = (weight - empty_weight) / (full_weight - empty_weight)
    clamped = min(_ONE, max(_ZERO, ratio))
    return BottleEquivalent(
        weight=weight,
        equivalent=_q(clamped),
        out_of_range=weight < empty_weight or weight > full_weight,
    )


def bottle_quantity(
    full_count: int,
    partial_weights: tuple[Decimal, ...],
    empty_weight: Decimal,
    full_weight: Decimal,
) -> BottleQuantity:
    """Full bottles plus the sum of partial-bottle equivalents."""
    partials = tuple(
        bottle_equivalent(w, empty_weight, full_weight) for w in partial_weights
    )
    partial_total = sum((p.equivalent for p in partials), _ZERO)
    return BottleQuantity(
        full_count=full_count,
        partials=partials,
        partial_total=_q(partial_total),
        total=_q(Decimal(full_count) + partial_total),
    )


@traced_engine(
    "conversion.keg_volume", "1.0",
    fingerprint_fields=("gross", "empty_keg_weight", "capacity_liters", "density"),
)
def keg_volume(
    gross: Decimal,
    empty_keg_weight: Decimal,
    capacity_liters: Decimal,
    density: Decimal = DEFAULT_KEG_DENSITY,
) -> KegVolume:
    """Remaining beer volume from a keg's gross weight.

    ``density`` is in kg/L, so one litre weighs ``density * 1000`` grams.
    """
    if capacity_liters <= 0:
        raise ConfigurationError(f"keg capacity must be positive, got {capacity_liters}")
    if density <= 0:
        raise ConfigurationError(f"keg density must be positive, got {density}")
    net = net_weight(gross, empty_keg_weight)
    volume = net.clamped / (density * 1000)
    fill = volume / capacity_liters * _HUNDRED
    return KegVolume(
        net=net,
        volume_liters=_q(volume),
        fill_percentage=_q(min(_HUNDRED, fill)),
        fill_capped=fill > _HUNDRED,
    )


@traced_engine(
    "conversion.keg_freshness", "1.0",
    fingerprint_fields=("tapped_date", "as_of", "freshness_days"),
)
def keg_freshness(
    tapped_date: date | None,
    as_of: date,
    freshness_days: int,
) -> KegFreshness:
    """Bucket a keg by the share of its freshness window already used."""
    if freshness_days <= 0:
        raise ConfigurationError(
            f"keg freshness window must be positive, got {freshness_days}"
        )
    days = 0 if tapped_date is None else max(0, (as_of - tapped_date).days)
    ratio = Decimal(days) / Decimal(freshness_days)

    if ratio <= Decimal("0.3"):
        status = KegFreshnessStatus.FRESH
    elif ratio <= Decimal("0.7"):
        status = KegFreshnessStatus.GOOD
    elif ratio <= _ONE:
        status = KegFreshnessStatus.DECLINING
    else:
        status = KegFreshnessStatus.EXPIRED

    return KegFreshness(
        days_since_tap=days,
        ratio=_q(ratio),
        status=status,
        estimated_days_remaining=max(0, freshness_days - days),
    )


def batch_expiry(batch_date: date, use_by_days: int) -> date:
    return batch_date + timedelta(days=use_by_days)


def batch_label(
    item_name: str,
    batch_date: date,
    pattern: str | None = None,
) -> str:
    """Human-readable batch reference, e.g. ``"Tomato Sauce-2024-01-15"``.

    The pattern may use ``{item_name}`` and ``{date}``; ``{date}`` accepts
    strftime format specs such as ``{date:%d%m%y}``.
    """
    try:
        return (pattern or DEFAULT_BATCH_LABEL_PATTERN).format(
            item_name=item_name, date=batch_date,
        )
    except (KeyError, IndexError, ValueError) as exc:
        raise ConfigurationError(f"invalid batch naming pattern {pattern!r}: {exc}") from exc


# ---------------------------------------------------------------------------
# Workflow dispatch
# ---------------------------------------------------------------------------


def _container_for(submission: RawCountSubmission, context: ConversionContext) -> ContainerInstance:
    container = context.container
    if container is None or container.container_id != submission.container_ref:
        raise ValidationError(
            f"container {submission.container_ref} was not resolved for this count"
        )
    return container


def _convert_weighed(
    item: InventoryItem,
    gross: Decimal,
    container: ContainerInstance,
) -> tuple[NetWeight, Decimal]:
    unit_weight = _require_positive(item, "typical_unit_weight_grams", item.typical_unit_weight_grams)
    result = quantity_from_weight(gross, container.tare_weight_grams, unit_weight)
    return result.net, result.quantity


def convert_submission(
    item: InventoryItem,
    submission: RawCountSubmission,
    context: ConversionContext,
) -> CountConversion:
    """Compute the canonical quantity candidate for any submission variant.

    Preconditions:
        Required fields have already been validated by the registry.

    Raises:
        ConfigurationError: If the item lacks a parameter its workflow needs
            or the submission variant is unknown.
    """
    match submission:
        case UnitCountSubmission(counted_quantity=counted):
            conversion = CountConversion(
                workflow=CountingWorkflow.UNIT_COUNT,
                quantity=_q(Decimal(counted)),
            )

        case ContainerWeightSubmission(gross_weight_grams=gross):
            container = _container_for(submission, context)
            net, quantity = _convert_weighed(item, gross, container)
            conversion = CountConversion(
                workflow=CountingWorkflow.CONTAINER_WEIGHT,
                quantity=quantity,
                gross_weight_grams=gross,
                tare_weight_grams=container.tare_weight_grams,
                net=net,
            )

        case BottleHybridSubmission(full_bottles_count=full_count, partial_bottle_weights=partials):
            if partials:
                empty = _require_positive(item, "empty_bottle_weight_grams", item.empty_bottle_weight_grams)
                full = _require_positive(item, "full_bottle_weight_grams", item.full_bottle_weight_grams)
                bottles = bottle_quantity(full_count, tuple(partials), empty, full)
            else:
                bottles = BottleQuantity(
                    full_count=full_count,
                    partials=(),
                    partial_total=_q(_ZERO),
                    total=_q(Decimal(full_count)),
                )
            conversion = CountConversion(
                workflow=CountingWorkflow.BOTTLE_HYBRID,
                quantity=bottles.total,
                bottles=bottles,
            )

        case KegWeightSubmission(gross_weight_grams=gross, keg_tapped_date=tapped):
            empty = _require_positive(item, "empty_keg_weight_grams", item.empty_keg_weight_grams)
            capacity = _require_positive(item, "keg_volume_liters", item.keg_volume_liters)
            keg = keg_volume(gross, empty, capacity, context.keg_density_kg_per_liter)
            if tapped is None and context.keg_state is not None:
                tapped = context.keg_state.tapped_date
            window = item.keg_freshness_days or context.default_keg_freshness_days
            conversion = CountConversion(
                workflow=CountingWorkflow.KEG_WEIGHT,
                quantity=keg.volume_liters,
                gross_weight_grams=gross,
                tare_weight_grams=empty,
                net=keg.net,
                keg=keg,
                freshness=keg_freshness(tapped, context.as_of, window),
            )

        case BatchWeightSubmission(gross_weight_grams=gross):
            container = _container_for(submission, context)
            net, quantity = _convert_weighed(item, gross, container)
            batch_date, use_by = _batch_dates(item, submission, context.batch_state)
            conversion = CountConversion(
                workflow=CountingWorkflow.BATCH_WEIGHT,
                quantity=quantity,
                gross_weight_grams=gross,
                tare_weight_grams=container.tare_weight_grams,
                net=net,
                batch_date=batch_date,
                use_by_date=use_by,
            )

        case _:
            logger.error(
                "conversion_unknown_submission",
                extra={"submission_type": type(submission).__name__},
            )
            raise ConfigurationError(
                f"No conversion for submission type {type(submission).__name__}"
            )

    logger.debug(
        "count_converted",
        extra={"item_id": item.item_id, **conversion.details()},
    )
    return conversion


def _batch_dates(
    item: InventoryItem,
    submission: BatchWeightSubmission,
    state: BatchState | None,
) -> tuple[date | None, date | None]:
    """Batch date and use-by date: explicit values first, then batch state."""
    batch_date = submission.batch_date or (state.batch_date if state is not None else None)
    if submission.use_by_date is not None:
        return batch_date, submission.use_by_date
    if state is not None and (submission.batch_date is None or submission.batch_date == state.batch_date):
        return batch_date, state.use_by_date
    if batch_date is not None and item.batch_use_by_days is not None:
        return batch_date, batch_expiry(batch_date, item.batch_use_by_days)
    return batch_date, None
