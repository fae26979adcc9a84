"""
Container, keg and batch lifecycle state (``stock_kernel.domain.containers``).

Responsibility
--------------
Frozen snapshots of the physical objects whose state outlives a single
count: reusable tared containers, tapped kegs and prepared batches.  Also
the ``LifecycleUpdate`` union describing every change the lifecycle
tracker may make.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Mutation is
expressed as ``dataclasses.replace`` copies; only the LifecycleTracker
service produces new snapshots.

Invariants enforced
-------------------
* ``ContainerInstance.times_used`` never decreases.
* A retired container (``is_active=False``) carries ``retired_date``.
* ``BatchState.use_by_date == batch_date + use_by_days``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum


class VerificationStatus(str, Enum):
    """Whether a container's tare weight is trustworthy."""

    CURRENT = "current"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class ContainerInstance:
    """A physical, reusable, tared vessel identified by a printed label."""

    container_id: str
    tare_weight_grams: Decimal
    last_weighed_date: datetime
    barcode: str | None = None
    verification_status: VerificationStatus = VerificationStatus.CURRENT
    times_used: int = 0
    last_used_date: datetime | None = None
    is_active: bool = True
    category: str | None = None
    max_capacity_ml: Decimal | None = None
    retired_date: datetime | None = None
    retirement_reason: str | None = None
    last_item_id: str | None = None

    def __post_init__(self) -> None:
        if self.times_used < 0:
            raise ValueError("times_used cannot be negative")
        if self.tare_weight_grams < 0:
            raise ValueError("tare_weight_grams cannot be negative")


@dataclass(frozen=True)
class KegState:
    item_id: str
    tapped_date: date | None = None


@dataclass(frozen=True)
class BatchState:
    batch_ref: str
    item_id: str
    batch_date: date
    use_by_days: int

    @property
    def use_by_date(self) -> date:
        return self.batch_date + timedelta(days=self.use_by_days)


# ---------------------------------------------------------------------------
# Lifecycle updates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContainerUsed:
    """Container was used for a committed count."""

    container_id: str
    used_at: datetime
    item_id: str | None = None


@dataclass(frozen=True)
class ContainerReweighed:
    container_id: str
    tare_weight_grams: Decimal
    weighed_at: datetime
    verification_status: VerificationStatus = VerificationStatus.CURRENT


@dataclass(frozen=True)
class ContainerRetired:
    container_id: str
    reason: str
    retired_at: datetime


@dataclass(frozen=True)
class ContainerRegistered:
    container: ContainerInstance


@dataclass(frozen=True)
class KegTapped:
    item_id: str
    tapped_date: date


@dataclass(frozen=True)
class BatchStarted:
    batch: BatchState


LifecycleUpdate = (
    ContainerUsed
    | ContainerReweighed
    | ContainerRetired
    | ContainerRegistered
    | KegTapped
    | BatchStarted
)


def apply_container_update(
    container: ContainerInstance,
    update: ContainerUsed | ContainerReweighed | ContainerRetired,
) -> ContainerInstance:
    """Snapshot of ``container`` after ``update``; the input is untouched."""
    match update:
        case ContainerUsed(used_at=used_at, item_id=item_id):
            return replace(
                container,
                times_used=container.times_used + 1,
                last_used_date=used_at,
                last_item_id=item_id or container.last_item_id,
            )
        case ContainerReweighed(tare_weight_grams=tare, weighed_at=weighed_at, verification_status=status):
            return replace(
                container,
                tare_weight_grams=tare,
                last_weighed_date=weighed_at,
                verification_status=status,
            )
        case ContainerRetired(reason=reason, retired_at=retired_at):
            return replace(
                container,
                is_active=False,
                retired_date=retired_at,
                retirement_reason=reason,
            )
        case _:
            raise TypeError(f"not a container update: {type(update).__name__}")
