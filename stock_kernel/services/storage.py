"""
Storage collaborator interfaces and the in-memory adapter.

Responsibility:
    Define the narrow interface the reconciliation engine uses to read
    count history and lifecycle state and to persist committed results.
    Any transport (SQL, HTTP, in-memory double) can stand behind it.

Architecture position:
    Kernel > Services.  Protocols only, plus ``InMemoryCountStore``, the
    reference adapter used by tests and single-process deployments.

Invariants enforced:
    - Every failure surfaces as ``StorageError``; adapters never return
      partial results silently.
    - ``persist_count_record`` is insert-only; a second record for the same
      submission is rejected.
    - ``persist_commit`` stores a count record and its lifecycle updates
      as one unit: either all of them are visible afterwards or none are.
    - Reads return frozen domain snapshots, never live mutable state.

Failure modes:
    - ``StorageError`` from any method.  ``InMemoryCountStore.fail_on``
      injects such failures for tests.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping, MutableMapping, Sequence
from typing import Protocol, runtime_checkable

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
from stock_kernel.domain.items import InventoryItem
from stock_kernel.domain.reconciliation import CountOutcome
from stock_kernel.domain.records import CountRecord
from stock_kernel.exceptions import RecordNotFoundError, StorageError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.storage")


@runtime_checkable
class CountStore(Protocol):
    """What the engine needs from persistence."""

    def get_latest_count_record(self, item_id: str) -> CountRecord | None: ...

    def list_recent_count_records(self, item_id: str, limit: int) -> tuple[CountRecord, ...]:
        """Most recent first."""
        ...

    def get_container_state(self, container_id: str) -> ContainerInstance | None: ...

    def list_container_states(self) -> tuple[ContainerInstance, ...]: ...

    def get_keg_state(self, item_id: str) -> KegState | None: ...

    def get_batch_state(self, batch_ref: str) -> BatchState | None: ...

    def persist_count_record(self, record: CountRecord) -> None: ...

    def persist_lifecycle_update(self, update: LifecycleUpdate) -> None: ...

    def persist_commit(
        self,
        record: CountRecord,
        updates: Sequence[LifecycleUpdate],
    ) -> None:
        """Persist a committed count together with its lifecycle updates."""
        ...


class ItemCatalog(Protocol):
    """Source of item configuration."""

    def get_item(self, item_id: str) -> InventoryItem | None: ...


class DispositionListener(Protocol):
    """Notified of every committed or rejected outcome."""

    def on_disposition(self, outcome: CountOutcome) -> None: ...


class InMemoryItemCatalog:
    def __init__(self, items: Iterable[InventoryItem] = ()):
        self._items: dict[str, InventoryItem] = {i.item_id: i for i in items}

    def add(self, item: InventoryItem) -> None:
        self._items[item.item_id] = item

    def get_item(self, item_id: str) -> InventoryItem | None:
        return self._items.get(item_id)


class InMemoryCountStore:
    """Dict-backed ``CountStore``.

    ``fail_on`` names operations that raise ``StorageError`` on their next
    call(s), for exercising commit-failure paths.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, list[CountRecord]] = {}
        self._submissions: set = set()
        self._containers: dict[str, ContainerInstance] = {}
        self._kegs: dict[str, KegState] = {}
        self._batches: dict[str, BatchState] = {}
        self._failures: dict[str, int] = {}

    # -- failure injection -------------------------------------------------

    def fail_on(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise StorageError."""
        self._failures[operation] = times

    def _maybe_fail(self, operation: str) -> None:
        remaining = self._failures.get(operation, 0)
        if remaining > 0:
            self._failures[operation] = remaining - 1
            raise StorageError(operation, "injected failure")

    # -- reads -------------------------------------------------------------

    def get_latest_count_record(self, item_id: str) -> CountRecord | None:
        self._maybe_fail("get_latest_count_record")
        records = self._records.get(item_id)
        return records[-1] if records else None

    def list_recent_count_records(self, item_id: str, limit: int) -> tuple[CountRecord, ...]:
        self._maybe_fail("list_recent_count_records")
        records = self._records.get(item_id, [])
        return tuple(reversed(records[-limit:])) if limit > 0 else ()

    def get_container_state(self, container_id: str) -> ContainerInstance | None:
        self._maybe_fail("get_container_state")
        return self._containers.get(container_id)

    def list_container_states(self) -> tuple[ContainerInstance, ...]:
        self._maybe_fail("list_container_states")
        return tuple(self._containers[k] for k in sorted(self._containers))

    def get_keg_state(self, item_id: str) -> KegState | None:
        self._maybe_fail("get_keg_state")
        return self._kegs.get(item_id)

    def get_batch_state(self, batch_ref: str) -> BatchState | None:
        self._maybe_fail("get_batch_state")
        return self._batches.get(batch_ref)

    @property
    def record_count(self) -> int:
        return sum(len(r) for r in self._records.values())

    # -- writes ------------------------------------------------------------

    def _check_new_submission(self, record: CountRecord) -> None:
        if record.submission_id in self._submissions:
            raise StorageError(
                "persist_count_record",
                f"submission {record.submission_id} already has a record",
            )

    def _append_record(self, record: CountRecord) -> None:
        self._submissions.add(record.submission_id)
        self._records.setdefault(record.item_id, []).append(record)

    def persist_count_record(self, record: CountRecord) -> None:
        self._maybe_fail("persist_count_record")
        with self._lock:
            self._check_new_submission(record)
            self._append_record(record)

    def persist_lifecycle_update(self, update: LifecycleUpdate) -> None:
        self._maybe_fail("persist_lifecycle_update")
        with self._lock:
            _stage_update(update, self._containers, self._kegs, self._batches)

    def persist_commit(
        self,
        record: CountRecord,
        updates: Sequence[LifecycleUpdate],
    ) -> None:
        """Stage every change on copies and swap them in only if all succeed."""
        with self._lock:
            self._maybe_fail("persist_count_record")
            self._check_new_submission(record)
            containers = dict(self._containers)
            kegs = dict(self._kegs)
            batches = dict(self._batches)
            for update in updates:
                self._maybe_fail("persist_lifecycle_update")
                _stage_update(update, containers, kegs, batches)

            self._append_record(record)
            self._containers, self._kegs, self._batches = containers, kegs, batches
        logger.debug(
            "count_commit_persisted",
            extra={"record_id": str(record.record_id), "lifecycle_updates": len(updates)},
        )

    def seed_records(self, records: Mapping[str, Iterable[CountRecord]]) -> None:
        """Load committed history directly (tests and imports)."""
        with self._lock:
            for item_id, item_records in records.items():
                for record in item_records:
                    self._submissions.add(record.submission_id)
                    self._records.setdefault(item_id, []).append(record)


def _stage_update(
    update: LifecycleUpdate,
    containers: MutableMapping[str, ContainerInstance],
    kegs: MutableMapping[str, KegState],
    batches: MutableMapping[str, BatchState],
) -> None:
    match update:
        case ContainerRegistered(container=container):
            containers[container.container_id] = container
        case ContainerUsed() | ContainerReweighed() | ContainerRetired():
            current = containers.get(update.container_id)
            if current is None:
                raise RecordNotFoundError("container", update.container_id)
            containers[update.container_id] = apply_container_update(current, update)
        case KegTapped(item_id=item_id, tapped_date=tapped_date):
            kegs[item_id] = KegState(item_id=item_id, tapped_date=tapped_date)
        case BatchStarted(batch=batch):
            batches[batch.batch_ref] = batch
        case _:
            raise StorageError(
                "persist_lifecycle_update",
                f"unsupported update {type(update).__name__}",
            )
