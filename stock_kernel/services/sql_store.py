"""
SqlAlchemyCountStore -- ``CountStore`` backed by a SQLAlchemy session.

Responsibility:
    Map count records and lifecycle state between domain snapshots and
    ORM rows.

Architecture position:
    Kernel > Services -- imperative shell.  Receives a ``Session`` from the
    caller.

Invariants enforced:
    - Flush only: the store never calls ``session.commit()`` or
      ``session.rollback()``; the caller (usually ``session_scope()``) owns
      the transaction.
    - Every ``SQLAlchemyError`` is wrapped in ``StorageError`` with the
      original as ``__cause__``.

Failure modes:
    - ``StorageError`` on any database failure, including a duplicate
      submission id.  After a failed flush the session must be rolled back
      by its owner before reuse.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stock_kernel.domain.containers import (
    BatchStarted,
    BatchState,
    ContainerInstance,
    ContainerRegistered,
    ContainerRetired,
    ContainerReweighed,
    ContainerUsed,
    KegState,
    KegTapped,
    LifecycleUpdate,
    apply_container_update,
)
from stock_kernel.domain.records import CountRecord
from stock_kernel.exceptions import RecordNotFoundError, StorageError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.container import (
    BatchStateModel,
    ContainerInstanceModel,
    KegStateModel,
)
from stock_kernel.models.count_record import CountRecordModel

logger = get_logger("services.sql_store")

T = TypeVar("T")


class SqlAlchemyCountStore:
    def __init__(self, session: Session):
        self.session = session

    def _run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except SQLAlchemyError as exc:
            logger.error(
                "storage_operation_failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise StorageError(operation, str(exc)) from exc

    # -- reads -------------------------------------------------------------

    def get_latest_count_record(self, item_id: str) -> CountRecord | None:
        records = self.list_recent_count_records(item_id, 1)
        return records[0] if records else None

    def list_recent_count_records(self, item_id: str, limit: int) -> tuple[CountRecord, ...]:
        def query() -> tuple[CountRecord, ...]:
            rows = self.session.scalars(
                select(CountRecordModel)
                .where(CountRecordModel.item_id == item_id)
                .order_by(
                    CountRecordModel.committed_at.desc(),
                    CountRecordModel.sequence.desc(),
                )
                .limit(limit)
            ).all()
            return tuple(row.to_domain() for row in rows)

        return self._run("list_recent_count_records", query)

    def get_container_state(self, container_id: str) -> ContainerInstance | None:
        def query() -> ContainerInstance | None:
            row = self.session.get(ContainerInstanceModel, container_id)
            return row.to_domain() if row is not None else None

        return self._run("get_container_state", query)

    def list_container_states(self) -> tuple[ContainerInstance, ...]:
        def query() -> tuple[ContainerInstance, ...]:
            rows = self.session.scalars(
                select(ContainerInstanceModel).order_by(ContainerInstanceModel.container_id)
            ).all()
            return tuple(row.to_domain() for row in rows)

        return self._run("list_container_states", query)

    def get_keg_state(self, item_id: str) -> KegState | None:
        def query() -> KegState | None:
            row = self.session.get(KegStateModel, item_id)
            return row.to_domain() if row is not None else None

        return self._run("get_keg_state", query)

    def get_batch_state(self, batch_ref: str) -> BatchState | None:
        def query() -> BatchState | None:
            row = self.session.get(BatchStateModel, batch_ref)
            return row.to_domain() if row is not None else None

        return self._run("get_batch_state", query)

    # -- writes ------------------------------------------------------------

    def persist_count_record(self, record: CountRecord) -> None:
        def write() -> None:
            self.session.add(CountRecordModel.from_domain(record))
            self.session.flush()

        self._run("persist_count_record", write)
        logger.debug(
            "count_record_persisted",
            extra={"record_id": str(record.record_id), "item_id": record.item_id},
        )

    def persist_lifecycle_update(self, update: LifecycleUpdate) -> None:
        def write() -> None:
            self._stage(update, {})
            self.session.flush()

        self._run("persist_lifecycle_update", write)

    def persist_commit(
        self,
        record: CountRecord,
        updates: Sequence[LifecycleUpdate],
    ) -> None:
        """Stage the record and every update, then flush them together.

        Unknown container targets are rejected before anything is added to
        the session, so a failed commit leaves nothing pending.
        """

        def write() -> None:
            with self.session.no_autoflush:
                self._check_targets(updates)
                self.session.add(CountRecordModel.from_domain(record))
                registered: dict[str, ContainerInstanceModel] = {}
                for update in updates:
                    self._stage(update, registered)
            self.session.flush()

        self._run("persist_commit", write)
        logger.debug(
            "count_commit_persisted",
            extra={"record_id": str(record.record_id), "lifecycle_updates": len(updates)},
        )

    def _check_targets(self, updates: Sequence[LifecycleUpdate]) -> None:
        known: set[str] = set()
        for update in updates:
            match update:
                case ContainerRegistered(container=container):
                    known.add(container.container_id)
                case ContainerUsed() | ContainerReweighed() | ContainerRetired():
                    if update.container_id in known:
                        continue
                    if self.session.get(ContainerInstanceModel, update.container_id) is None:
                        raise RecordNotFoundError("container", update.container_id)
                    known.add(update.container_id)
                case KegTapped() | BatchStarted():
                    pass
                case _:
                    raise StorageError(
                        "persist_commit",
                        f"unsupported update {type(update).__name__}",
                    )

    def _container_row(
        self,
        container_id: str,
        registered: dict[str, ContainerInstanceModel],
    ) -> ContainerInstanceModel | None:
        # rows added earlier in the same unit are pending, not in the identity map
        row = registered.get(container_id)
        return row if row is not None else self.session.get(ContainerInstanceModel, container_id)

    def _stage(
        self,
        update: LifecycleUpdate,
        registered: dict[str, ContainerInstanceModel],
    ) -> None:
        match update:
            case ContainerRegistered(container=container):
                row = self._container_row(container.container_id, registered)
                if row is None:
                    row = ContainerInstanceModel.from_domain(container)
                    self.session.add(row)
                    registered[container.container_id] = row
                else:
                    row.apply(container)
            case ContainerUsed() | ContainerReweighed() | ContainerRetired():
                row = self._container_row(update.container_id, registered)
                if row is None:
                    raise RecordNotFoundError("container", update.container_id)
                row.apply(apply_container_update(row.to_domain(), update))
            case KegTapped(item_id=item_id, tapped_date=tapped_date):
                row = self.session.get(KegStateModel, item_id)
                if row is None:
                    self.session.add(KegStateModel(item_id=item_id, tapped_date=tapped_date))
                else:
                    row.tapped_date = tapped_date
            case BatchStarted(batch=batch):
                row = self.session.get(BatchStateModel, batch.batch_ref)
                if row is None:
                    self.session.add(
                        BatchStateModel(
                            batch_ref=batch.batch_ref,
                            item_id=batch.item_id,
                            batch_date=batch.batch_date,
                            use_by_days=batch.use_by_days,
                        )
                    )
                else:
                    row.item_id = batch.item_id
                    row.batch_date = batch.batch_date
                    row.use_by_days = batch.use_by_days
            case _:
                raise StorageError(
                    "persist_lifecycle_update",
                    f"unsupported update {type(update).__name__}",
                )
