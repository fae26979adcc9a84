"""
Module: stock_kernel.models.container
Responsibility: ORM persistence for lifecycle state -- container instances,
    tapped kegs and prepared batches.
Architecture position: Kernel > Models.  Only the storage adapter writes
    these rows, and only on behalf of the LifecycleTracker.

Invariants enforced:
    - One row per container / keg item / batch reference (natural keys).
    - Last-write-wins: rows are updated in place.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base
from stock_kernel.domain.containers import (
    BatchState,
    ContainerInstance,
    KegState,
    VerificationStatus,
)


class ContainerInstanceModel(Base):
    __tablename__ = "container_instances"

    container_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    barcode: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)
    tare_weight_grams: Mapped[Decimal] = mapped_column(nullable=False)
    last_weighed_date: Mapped[datetime] = mapped_column(nullable=False)
    verification_status: Mapped[str] = mapped_column(String(20), nullable=False)
    times_used: Mapped[int] = mapped_column(nullable=False, default=0)
    last_used_date: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    max_capacity_ml: Mapped[Decimal | None] = mapped_column(nullable=True)
    retired_date: Mapped[datetime | None] = mapped_column(nullable=True)
    retirement_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def apply(self, container: ContainerInstance) -> None:
        """Overwrite every column from a domain snapshot."""
        self.barcode = container.barcode
        self.tare_weight_grams = container.tare_weight_grams
        self.last_weighed_date = container.last_weighed_date
        self.verification_status = container.verification_status.value
        self.times_used = container.times_used
        self.last_used_date = container.last_used_date
        self.is_active = container.is_active
        self.category = container.category
        self.max_capacity_ml = container.max_capacity_ml
        self.retired_date = container.retired_date
        self.retirement_reason = container.retirement_reason
        self.last_item_id = container.last_item_id

    @classmethod
    def from_domain(cls, container: ContainerInstance) -> ContainerInstanceModel:
        model = cls(container_id=container.container_id)
        model.apply(container)
        return model

    def to_domain(self) -> ContainerInstance:
        return ContainerInstance(
            container_id=self.container_id,
            barcode=self.barcode,
            tare_weight_grams=self.tare_weight_grams,
            last_weighed_date=self.last_weighed_date,
            verification_status=VerificationStatus(self.verification_status),
            times_used=self.times_used,
            last_used_date=self.last_used_date,
            is_active=self.is_active,
            category=self.category,
            max_capacity_ml=self.max_capacity_ml,
            retired_date=self.retired_date,
            retirement_reason=self.retirement_reason,
            last_item_id=self.last_item_id,
        )

    def __repr__(self) -> str:
        return f"<Container {self.container_id}: tare={self.tare_weight_grams}g>"


class KegStateModel(Base):
    __tablename__ = "keg_states"

    item_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    tapped_date: Mapped[date | None] = mapped_column(nullable=True)

    def to_domain(self) -> KegState:
        return KegState(item_id=self.item_id, tapped_date=self.tapped_date)


class BatchStateModel(Base):
    __tablename__ = "batch_states"

    batch_ref: Mapped[str] = mapped_column(String(150), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    batch_date: Mapped[date] = mapped_column(nullable=False)
    use_by_days: Mapped[int] = mapped_column(nullable=False)

    def to_domain(self) -> BatchState:
        return BatchState(
            batch_ref=self.batch_ref,
            item_id=self.item_id,
            batch_date=self.batch_date,
            use_by_days=self.use_by_days,
        )
