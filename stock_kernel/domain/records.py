"""
CountRecord -- the persisted, immutable output of a committed count.

Invariants enforced:
    - A record exists only for committed counts (disposition is always one
      of the two committed variants).
    - ``variance_*`` fields are set together, and only when a previous
      committed count exists.
    - Frozen after creation; corrections are new records.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from stock_kernel.domain.anomaly import Anomaly
from stock_kernel.domain.items import CountingWorkflow


class CountDisposition(str, Enum):
    COMMITTED = "committed"
    COMMITTED_WITH_OVERRIDE = "committed_with_override"


@dataclass(frozen=True)
class CountRecord:
    record_id: UUID
    submission_id: UUID
    item_id: str
    workflow: CountingWorkflow
    quantity: Decimal
    raw_inputs: dict[str, Any]
    disposition: CountDisposition
    committed_at: datetime
    anomalies: tuple[Anomaly, ...] = ()
    previous_quantity: Decimal | None = None
    variance_quantity: Decimal | None = None
    variance_percentage: Decimal | None = None
    actor_id: str | None = None
    container_instance_id: str | None = None
    gross_weight_grams: Decimal | None = None
    notes: str | None = None
    override_notes: str | None = None

    def __post_init__(self) -> None:
        has_previous = self.previous_quantity is not None
        if has_previous != (self.variance_quantity is not None):
            raise ValueError("previous_quantity and variance_quantity must be set together")
        if self.disposition is CountDisposition.COMMITTED_WITH_OVERRIDE and not self.override_notes:
            raise ValueError("an overridden count must carry override_notes")

    @property
    def was_overridden(self) -> bool:
        return self.disposition is CountDisposition.COMMITTED_WITH_OVERRIDE
