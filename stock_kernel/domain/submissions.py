"""
Raw count submissions -- a closed tagged union, one variant per workflow.

A submission is ephemeral input: it lives for one reconciliation pass and
is then either discarded or transformed into a CountRecord.  Fields are
optional at construction so that missing values surface as a
MissingRequiredFieldsError from registry validation rather than as a
constructor TypeError.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID, uuid4

from stock_kernel.domain.items import CountingWorkflow

_COMMON_FIELDS = frozenset({
    "submission_id",
    "item_id",
    "actor_id",
    "notes",
    "anomaly_override",
    "anomaly_notes",
})


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (tuple, list)):
        return [_json_safe(v) for v in value]
    return str(value)


@dataclass(frozen=True, kw_only=True)
class RawCountSubmission:
    """Fields shared by every submission variant."""

    workflow: ClassVar[CountingWorkflow]

    item_id: str
    actor_id: str | None = None
    submission_id: UUID = field(default_factory=uuid4)
    notes: str | None = None
    anomaly_override: bool = False
    anomaly_notes: str | None = None

    @property
    def container_ref(self) -> str | None:
        """Container referenced by this submission, if the variant has one."""
        return getattr(self, "container_instance_id", None)

    def raw_inputs(self) -> dict[str, Any]:
        """Workflow-specific inputs as a JSON-safe mapping, retained for audit."""
        return {
            f.name: _json_safe(getattr(self, f.name))
            for f in fields(self)
            if f.name not in _COMMON_FIELDS
        }


@dataclass(frozen=True, kw_only=True)
class UnitCountSubmission(RawCountSubmission):
    workflow: ClassVar[CountingWorkflow] = CountingWorkflow.UNIT_COUNT

    counted_quantity: Decimal | None = None


@dataclass(frozen=True, kw_only=True)
class ContainerWeightSubmission(RawCountSubmission):
    workflow: ClassVar[CountingWorkflow] = CountingWorkflow.CONTAINER_WEIGHT

    container_instance_id: str | None = None
    gross_weight_grams: Decimal | None = None


@dataclass(frozen=True, kw_only=True)
class BottleHybridSubmission(RawCountSubmission):
    workflow: ClassVar[CountingWorkflow] = CountingWorkflow.BOTTLE_HYBRID

    full_bottles_count: int | None = None
    partial_bottle_weights: tuple[Decimal, ...] = ()


@dataclass(frozen=True, kw_only=True)
class KegWeightSubmission(RawCountSubmission):
    workflow: ClassVar[CountingWorkflow] = CountingWorkflow.KEG_WEIGHT

    gross_weight_grams: Decimal | None = None
    keg_tapped_date: date | None = None
    temperature_celsius: Decimal | None = None


@dataclass(frozen=True, kw_only=True)
class BatchWeightSubmission(RawCountSubmission):
    workflow: ClassVar[CountingWorkflow] = CountingWorkflow.BATCH_WEIGHT

    container_instance_id: str | None = None
    gross_weight_grams: Decimal | None = None
    batch_ref: str | None = None
    batch_date: date | None = None
    use_by_date: date | None = None


SUBMISSION_TYPES: dict[CountingWorkflow, type[RawCountSubmission]] = {
    cls.workflow: cls
    for cls in (
        UnitCountSubmission,
        ContainerWeightSubmission,
        BottleHybridSubmission,
        KegWeightSubmission,
        BatchWeightSubmission,
    )
}
