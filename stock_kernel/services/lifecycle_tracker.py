"""
LifecycleTracker -- single owner of container, keg and batch state.

Responsibility:
    Every change to a container's usage, tare weight or retirement, a keg's
    tap date, or a batch's clock goes through this service.  Each change
    is expressed as a ``LifecycleUpdate`` and persisted through the store;
    the tracker never writes fields ad hoc.

Architecture position:
    Kernel > Services -- imperative shell.  Reads and writes through the
    ``CountStore`` collaborator; uses the pure
    ``compute_verification_status`` engine for tare trustworthiness.

Invariants enforced:
    - Mutations are last-write-wins; no merge logic.
    - ``plan_*`` methods validate and build an update without side effects;
      ``apply`` persists it.  The reconciler plans first, then ``commit``
      persists the count record and its updates together.
    - Verification status returned by ``container()`` is always recomputed
      for the requested as-of time.

Failure modes:
    - ``RecordNotFoundError`` for an unknown container.
    - ``InactiveContainerError`` when using or reweighing a retired container.
    - ``ValidationError`` for a negative tare or non-positive use-by window.
    - ``StorageError`` from the store propagates unchanged.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

from stock_config.schema import CountingPolicy
from stock_engines.containers import (
    ContainerRecommendation,
    compute_verification_status,
    rank_containers,
)
from stock_kernel.domain.clock import Clock
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
from stock_kernel.domain.records import CountRecord
from stock_kernel.exceptions import (
    InactiveContainerError,
    RecordNotFoundError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.services.storage import CountStore

logger = get_logger("services.lifecycle")


class LifecycleTracker:
    def __init__(self, store: CountStore, policy: CountingPolicy, clock: Clock):
        self._store = store
        self._policy = policy
        self._clock = clock

    # -- reads -------------------------------------------------------------

    def _verification_for(self, last_weighed: datetime, as_of: datetime):
        return compute_verification_status(
            last_weighed,
            as_of,
            window_days=self._policy.verification_window_days,
            grace_days=self._policy.verification_grace_days,
        )

    def container(self, container_id: str, as_of: datetime | None = None) -> ContainerInstance:
        """Container snapshot with verification status recomputed for ``as_of``."""
        stored = self._store.get_container_state(container_id)
        if stored is None:
            raise RecordNotFoundError("container", container_id)
        status = self._verification_for(stored.last_weighed_date, as_of or self._clock.now())
        if status is stored.verification_status:
            return stored
        return replace(stored, verification_status=status)

    def keg_state(self, item_id: str) -> KegState | None:
        return self._store.get_keg_state(item_id)

    def batch_state(self, batch_ref: str) -> BatchState | None:
        return self._store.get_batch_state(batch_ref)

    def recommend_containers(
        self,
        item: InventoryItem,
        as_of: datetime | None = None,
    ) -> tuple[ContainerRecommendation, ...]:
        """Rank every registered container for ``item``."""
        now = as_of or self._clock.now()
        current = [
            replace(c, verification_status=self._verification_for(c.last_weighed_date, now))
            for c in self._store.list_container_states()
        ]
        return rank_containers(current, item, now)

    # -- planning (no side effects) ---------------------------------------

    def _active_container(self, container_id: str) -> ContainerInstance:
        container = self.container(container_id)
        if not container.is_active:
            raise InactiveContainerError(container_id)
        return container

    def plan_usage(
        self,
        container_id: str,
        timestamp: datetime | None = None,
        item_id: str | None = None,
    ) -> ContainerUsed:
        self._active_container(container_id)
        return ContainerUsed(
            container_id=container_id,
            used_at=timestamp or self._clock.now(),
            item_id=item_id,
        )

    def plan_reweigh(
        self,
        container_id: str,
        new_tare: Decimal,
        timestamp: datetime | None = None,
    ) -> ContainerReweighed:
        if new_tare < 0:
            raise ValidationError(f"tare weight cannot be negative, got {new_tare}")
        self._active_container(container_id)
        weighed_at = timestamp or self._clock.now()
        return ContainerReweighed(
            container_id=container_id,
            tare_weight_grams=new_tare,
            weighed_at=weighed_at,
            verification_status=self._verification_for(weighed_at, self._clock.now()),
        )

    # -- mutation ----------------------------------------------------------

    def apply(self, update: LifecycleUpdate) -> None:
        """Persist one planned update through the store."""
        self._store.persist_lifecycle_update(update)
        _log_applied(update)

    def commit(self, record: CountRecord, updates: Sequence[LifecycleUpdate]) -> None:
        """Persist a count record and its planned updates as one unit."""
        self._store.persist_commit(record, updates)
        for update in updates:
            _log_applied(update)

    def register_container(self, container: ContainerInstance) -> ContainerInstance:
        if container.tare_weight_grams < 0:
            raise ValidationError(
                f"tare weight cannot be negative, got {container.tare_weight_grams}"
            )
        self.apply(ContainerRegistered(container=container))
        return container

    def record_usage(
        self,
        container_id: str,
        timestamp: datetime | None = None,
        item_id: str | None = None,
    ) -> ContainerInstance:
        """Increment the usage counter and stamp the last-used date."""
        update = self.plan_usage(container_id, timestamp, item_id)
        before = self.container(container_id)
        self.apply(update)
        return apply_container_update(before, update)

    def reweigh(
        self,
        container_id: str,
        new_tare: Decimal,
        timestamp: datetime | None = None,
    ) -> ContainerInstance:
        """Record a fresh tare weight and recompute verification status."""
        update = self.plan_reweigh(container_id, new_tare, timestamp)
        before = self.container(container_id)
        self.apply(update)
        return apply_container_update(before, update)

    def retire(
        self,
        container_id: str,
        reason: str,
        timestamp: datetime | None = None,
    ) -> ContainerInstance:
        """Take a container out of service.  Retired containers are never deleted."""
        before = self.container(container_id)
        update = ContainerRetired(
            container_id=container_id,
            reason=reason,
            retired_at=timestamp or self._clock.now(),
        )
        self.apply(update)
        return apply_container_update(before, update)

    def tap_keg(self, item_id: str, tap_date: date) -> KegState:
        self.apply(KegTapped(item_id=item_id, tapped_date=tap_date))
        return KegState(item_id=item_id, tapped_date=tap_date)

    def start_batch(
        self,
        batch_ref: str,
        item_id: str,
        batch_date: date,
        use_by_days: int,
    ) -> BatchState:
        if use_by_days <= 0:
            raise ValidationError(f"use-by window must be positive, got {use_by_days}")
        batch = BatchState(
            batch_ref=batch_ref,
            item_id=item_id,
            batch_date=batch_date,
            use_by_days=use_by_days,
        )
        self.apply(BatchStarted(batch=batch))
        return batch


def _log_applied(update: LifecycleUpdate) -> None:
    logger.info(
        "lifecycle_update_applied",
        extra={"update_type": type(update).__name__, **_update_keys(update)},
    )


def _update_keys(update: LifecycleUpdate) -> dict[str, str]:
    match update:
        case ContainerRegistered(container=container):
            return {"container_id": container.container_id}
        case ContainerUsed() | ContainerReweighed() | ContainerRetired():
            return {"container_id": update.container_id}
        case KegTapped(item_id=item_id):
            return {"item_id": item_id}
        case BatchStarted(batch=batch):
            return {"batch_ref": batch.batch_ref, "item_id": batch.item_id}
        case _:
            return {}
