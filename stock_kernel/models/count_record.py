"""
Module: stock_kernel.models.count_record
Responsibility: ORM persistence for committed count records.
Architecture position: Kernel > Models.  Maps to and from
    ``stock_kernel.domain.records.CountRecord``; imports db/base.py and the
    domain value objects only.

Invariants enforced:
    - One row per committed submission (``submission_id`` is unique).
    - Rows are append-only: the store inserts, never updates.
    - (item_id, committed_at) index supports "latest count" and history
      queries; ``sequence`` orders records sharing a ``committed_at``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base
from stock_kernel.domain.anomaly import Anomaly, AnomalySeverity, AnomalyType
from stock_kernel.domain.items import CountingWorkflow
from stock_kernel.domain.records import CountDisposition, CountRecord


def _anomaly_to_json(anomaly: Anomaly) -> dict:
    return {
        "anomaly_type": anomaly.anomaly_type.value,
        "severity": anomaly.severity.value,
        "message": anomaly.message,
        "suggested_action": anomaly.suggested_action,
        "confidence_score": str(anomaly.confidence_score),
        "details": {k: (v if isinstance(v, (int, str, bool)) or v is None else str(v))
                    for k, v in anomaly.details.items()},
    }


def _anomaly_from_json(data: dict) -> Anomaly:
    return Anomaly(
        anomaly_type=AnomalyType(data["anomaly_type"]),
        severity=AnomalySeverity(data["severity"]),
        message=data["message"],
        suggested_action=data["suggested_action"],
        confidence_score=Decimal(data["confidence_score"]),
        details=dict(data.get("details") or {}),
    )


def _optional_decimal(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


class CountRecordModel(Base):
    """Persistent storage for one committed count."""

    __tablename__ = "count_records"

    __table_args__ = (
        Index("idx_count_record_item_committed", "item_id", "committed_at"),
        Index("idx_count_record_container", "container_instance_id"),
    )

    # insertion order, tie-break for records committed at the same instant
    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_id: Mapped[UUID] = mapped_column(unique=True, nullable=False)
    submission_id: Mapped[UUID] = mapped_column(unique=True, nullable=False)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    workflow: Mapped[str] = mapped_column(String(30), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    raw_inputs: Mapped[dict] = mapped_column(JSON, nullable=False)
    disposition: Mapped[str] = mapped_column(String(30), nullable=False)
    committed_at: Mapped[datetime] = mapped_column(nullable=False)
    anomalies: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    previous_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    gross_weight_grams: Mapped[Decimal | None] = mapped_column(nullable=True)

    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    container_instance_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    override_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @classmethod
    def from_domain(cls, record: CountRecord) -> CountRecordModel:
        return cls(
            record_id=record.record_id,
            submission_id=record.submission_id,
            item_id=record.item_id,
            workflow=record.workflow.value,
            quantity=record.quantity,
            raw_inputs=dict(record.raw_inputs),
            disposition=record.disposition.value,
            committed_at=record.committed_at,
            anomalies=[_anomaly_to_json(a) for a in record.anomalies],
            previous_quantity=record.previous_quantity,
            variance_quantity=record.variance_quantity,
            variance_percentage=record.variance_percentage,
            gross_weight_grams=record.gross_weight_grams,
            actor_id=record.actor_id,
            container_instance_id=record.container_instance_id,
            notes=record.notes,
            override_notes=record.override_notes,
        )

    def to_domain(self) -> CountRecord:
        return CountRecord(
            record_id=self.record_id,
            submission_id=self.submission_id,
            item_id=self.item_id,
            workflow=CountingWorkflow(self.workflow),
            quantity=self.quantity,
            raw_inputs=dict(self.raw_inputs),
            disposition=CountDisposition(self.disposition),
            committed_at=self.committed_at,
            anomalies=tuple(_anomaly_from_json(a) for a in self.anomalies or ()),
            previous_quantity=self.previous_quantity,
            variance_quantity=self.variance_quantity,
            variance_percentage=self.variance_percentage,
            gross_weight_grams=self.gross_weight_grams,
            actor_id=self.actor_id,
            container_instance_id=self.container_instance_id,
            notes=self.notes,
            override_notes=self.override_notes,
        )

    def __repr__(self) -> str:
        return (
            f"<CountRecord {self.record_id}: item={self.item_id} "
            f"qty={self.quantity} ({self.disposition})>"
        )
