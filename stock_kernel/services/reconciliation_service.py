"""
CountReconciler -- drives one count submission through the state machine.

Responsibility:
    Orchestrates a reconciliation pass: field validation, conversion,
    anomaly detection, the commit/hold/reject decision, and on commit the
    persisted ``CountRecord`` plus lifecycle updates.

Architecture position:
    Kernel > Services -- imperative shell.  Calls the pure engines
    (registry, conversion, anomaly detector) and the storage collaborator.
    Every move between states goes through ``CountReconciliation.transition``.

Invariants enforced:
    - Validation runs before conversion; a submission with missing fields
      is rejected without any conversion attempt.
    - Critical anomalies never auto-commit; only an explicit override with
      notes commits them, tagged ``committed_with_override``.
    - A commit is all-or-nothing: the count record and its lifecycle
      updates persist as one unit, so a failed commit leaves nothing behind
      and the same submission can be resubmitted.
    - Anomalies are recomputed on every pass, including override passes.
    - A count is committed at most once (``committed`` is terminal).

Failure modes:
    - Rejected outcomes carry their ``ValidationError`` / ``ConfigurationError``.
    - ``CommitFailedError`` (``__cause__`` = the ``StorageError``) when a
      persist fails; nothing is retried.
    - ``StorageError`` from history or lifecycle reads propagates unchanged.
    - ``IllegalReconciliationTransitionError`` when override/decline is
      called on an outcome that is not awaiting confirmation.

Audit relevance:
    Every pass logs ``count_submitted`` and exactly one of
    ``count_committed``, ``count_held`` or ``count_rejected`` under a
    submission-scoped ``LogContext``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

from stock_config.schema import CountingPolicy
from stock_engines.anomaly.detector import AnomalyDetector
from stock_engines.anomaly.rules import DetectionContext, check_required_fields
from stock_engines.conversion import ConversionContext, CountConversion, convert_submission
from stock_engines.registry import WorkflowRegistry
from stock_kernel.domain.anomaly import Anomaly, has_critical
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.containers import (
    BatchStarted,
    BatchState,
    ContainerInstance,
    KegState,
    KegTapped,
    LifecycleUpdate,
)
from stock_kernel.domain.items import CountingWorkflow, InventoryItem
from stock_kernel.domain.reconciliation import (
    CountOutcome,
    CountReconciliation,
    ReconciliationState,
)
from stock_kernel.domain.records import CountDisposition, CountRecord
from stock_kernel.domain.submissions import (
    BatchWeightSubmission,
    KegWeightSubmission,
    RawCountSubmission,
)
from stock_kernel.exceptions import (
    CommitFailedError,
    ConfigurationError,
    InactiveContainerError,
    IllegalReconciliationTransitionError,
    MissingRequiredFieldsError,
    RecordNotFoundError,
    StockKernelError,
    StorageError,
    UnknownContainerError,
    UnknownItemError,
    ValidationError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.lifecycle_tracker import LifecycleTracker
from stock_kernel.services.serialization import KeyedLocks
from stock_kernel.services.storage import CountStore, DispositionListener, ItemCatalog

logger = get_logger("services.reconciliation")

_PERCENT_PRECISION = Decimal("0.01")


class CountReconciler:
    """
    Decides the disposition of raw count submissions.

    Contract:
        ``submit`` always returns a ``CountOutcome`` (committed, held or
        rejected) unless persisting a commit fails, in which case
        ``CommitFailedError`` is raised and nothing is reported committed.

    Non-goals:
        - Does NOT check who may override; callers gate ``override``.
        - Does NOT retry storage failures.
    """

    def __init__(
        self,
        *,
        policy: CountingPolicy,
        registry: WorkflowRegistry,
        catalog: ItemCatalog,
        store: CountStore,
        clock: Clock,
        tracker: LifecycleTracker | None = None,
        detector: AnomalyDetector | None = None,
        locks: KeyedLocks | None = None,
        listeners: Iterable[DispositionListener] = (),
    ):
        self._policy = policy
        self._registry = registry
        self._catalog = catalog
        self._store = store
        self._clock = clock
        self._tracker = tracker or LifecycleTracker(store, policy, clock)
        self._detector = detector or AnomalyDetector(policy)
        self._locks = locks
        self._listeners = tuple(listeners)

    @property
    def tracker(self) -> LifecycleTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, submission: RawCountSubmission) -> CountOutcome:
        """Run a fresh submission from ``draft`` to its disposition."""
        reconciliation = CountReconciliation(submission_id=submission.submission_id)
        return self._guarded(submission, reconciliation)

    def override(
        self,
        outcome: CountOutcome,
        notes: str,
        actor_id: str | None = None,
    ) -> CountOutcome:
        """Re-run a held count with ``anomaly_override`` set.

        Raises:
            IllegalReconciliationTransitionError: If ``outcome`` is not
                awaiting confirmation.
        """
        self._require_held(outcome, ReconciliationState.VALIDATING)
        submission = replace(
            outcome.submission,
            anomaly_override=True,
            anomaly_notes=notes,
            actor_id=actor_id or outcome.submission.actor_id,
        )
        logger.info(
            "count_override_requested",
            extra={
                "submission_id": str(submission.submission_id),
                "override_actor_id": submission.actor_id,
                "anomaly_types": [a.anomaly_type.value for a in outcome.anomalies],
            },
        )
        return self._guarded(submission, outcome.reconciliation)

    def decline(self, outcome: CountOutcome, reason: str) -> CountOutcome:
        """Discard a held count.  No record is created."""
        self._require_held(outcome, ReconciliationState.REJECTED)
        declined = replace(
            outcome,
            reconciliation=outcome.reconciliation.transition(ReconciliationState.REJECTED),
            decline_reason=reason,
        )
        with LogContext.bind(
            submission_id=str(outcome.submission.submission_id),
            item_id=outcome.submission.item_id,
        ):
            logger.info("count_declined", extra={"reason": reason})
        self._notify(declined)
        return declined

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _require_held(self, outcome: CountOutcome, target: ReconciliationState) -> None:
        if not outcome.is_held:
            raise IllegalReconciliationTransitionError(
                str(outcome.submission.submission_id),
                outcome.state.value,
                target.value,
            )

    def _guarded(
        self,
        submission: RawCountSubmission,
        reconciliation: CountReconciliation,
    ) -> CountOutcome:
        keys = [f"item:{submission.item_id}"]
        if submission.container_ref:
            keys.append(f"container:{submission.container_ref}")

        with LogContext.bind(
            submission_id=str(submission.submission_id),
            item_id=submission.item_id,
            actor_id=submission.actor_id,
            container_id=submission.container_ref,
        ):
            if self._locks is None:
                outcome = self._run(submission, reconciliation)
            else:
                with self._locks.hold(keys):
                    outcome = self._run(submission, reconciliation)
        if outcome.state in (ReconciliationState.COMMITTED, ReconciliationState.REJECTED):
            self._notify(outcome)
        return outcome

    def _run(
        self,
        submission: RawCountSubmission,
        reconciliation: CountReconciliation,
    ) -> CountOutcome:
        reconciliation = reconciliation.transition(ReconciliationState.VALIDATING)
        now = self._clock.now()
        logger.info(
            "count_submitted",
            extra={
                "workflow": type(submission).workflow.value,
                "anomaly_override": submission.anomaly_override,
            },
        )

        # 1. Field validation -- rejects before any conversion.
        item = self._catalog.get_item(submission.item_id)
        if item is None or not item.is_active:
            return self._reject(submission, reconciliation, UnknownItemError(submission.item_id))
        try:
            missing = self._registry.validate_required_fields(item.workflow, submission)
        except (ConfigurationError, ValidationError) as exc:
            return self._reject(submission, reconciliation, exc)
        if missing:
            anomalies = check_required_fields(item.workflow.value, missing)
            error = MissingRequiredFieldsError(item.workflow.value, missing, anomalies)
            return self._reject(submission, reconciliation, error, anomalies)

        # 2. Lifecycle state and history.
        try:
            container = self._resolve_container(submission, now)
        except ValidationError as exc:
            return self._reject(submission, reconciliation, exc)
        keg_state = (
            self._tracker.keg_state(item.item_id)
            if item.workflow is CountingWorkflow.KEG_WEIGHT
            else None
        )
        batch_state = (
            self._tracker.batch_state(submission.batch_ref)
            if isinstance(submission, BatchWeightSubmission) and submission.batch_ref
            else None
        )
        history = self._store.list_recent_count_records(item.item_id, self._policy.history_limit)
        previous = history[0] if history else None

        # 3. Conversion.
        try:
            conversion = convert_submission(
                item,
                submission,
                ConversionContext(
                    as_of=now.date(),
                    container=container,
                    keg_state=keg_state,
                    batch_state=batch_state,
                    keg_density_kg_per_liter=self._policy.keg_density_kg_per_liter,
                    default_keg_freshness_days=self._policy.default_keg_freshness_days,
                ),
            )
        except (ConfigurationError, ValidationError) as exc:
            return self._reject(submission, reconciliation, exc)

        # 4. Anomaly detection.
        anomalies = self._detector.detect(
            DetectionContext(
                item=item,
                submission=submission,
                conversion=conversion,
                definition=self._registry.definition(item.workflow),
                policy=self._policy,
                as_of=now.date(),
                container=container,
                keg_state=keg_state,
                batch_state=batch_state,
                previous_record=previous,
                history=history,
            )
        )

        # 5. Decision.
        override = submission.anomaly_override and bool(
            submission.anomaly_notes and submission.anomaly_notes.strip()
        )
        if not anomalies:
            reconciliation = reconciliation.transition(ReconciliationState.AUTO_COMMITTABLE)
            disposition = CountDisposition.COMMITTED
        elif override:
            disposition = CountDisposition.COMMITTED_WITH_OVERRIDE
        elif not has_critical(anomalies) and self._policy.auto_commit_low_severity:
            disposition = CountDisposition.COMMITTED
        else:
            return self._hold(submission, reconciliation, conversion, anomalies)

        return self._commit(
            submission, reconciliation, item, conversion, anomalies,
            disposition, previous, container, keg_state, batch_state, now,
        )

    def _resolve_container(
        self,
        submission: RawCountSubmission,
        now: datetime,
    ) -> ContainerInstance | None:
        container_id = submission.container_ref
        if container_id is None:
            return None
        try:
            container = self._tracker.container(container_id, now)
        except RecordNotFoundError as exc:
            raise UnknownContainerError(container_id) from exc
        if not container.is_active:
            raise InactiveContainerError(container_id)
        return container

    # ------------------------------------------------------------------
    # Dispositions
    # ------------------------------------------------------------------

    def _reject(
        self,
        submission: RawCountSubmission,
        reconciliation: CountReconciliation,
        error: StockKernelError,
        anomalies: tuple[Anomaly, ...] = (),
    ) -> CountOutcome:
        reconciliation = reconciliation.transition(ReconciliationState.REJECTED)
        logger.warning(
            "count_rejected",
            extra={"error": error},
        )
        return CountOutcome(
            submission=submission,
            reconciliation=reconciliation,
            anomalies=anomalies,
            error=error,
        )

    def _hold(
        self,
        submission: RawCountSubmission,
        reconciliation: CountReconciliation,
        conversion: CountConversion,
        anomalies: tuple[Anomaly, ...],
    ) -> CountOutcome:
        reconciliation = reconciliation.transition(ReconciliationState.AWAITING_CONFIRMATION)
        logger.info(
            "count_held",
            extra={
                "quantity": conversion.quantity,
                "anomaly_types": [a.anomaly_type.value for a in anomalies],
                "critical": has_critical(anomalies),
            },
        )
        return CountOutcome(
            submission=submission,
            reconciliation=reconciliation,
            anomalies=anomalies,
            quantity=conversion.quantity,
            details=conversion.details(),
        )

    def _build_record(
        self,
        submission: RawCountSubmission,
        item: InventoryItem,
        conversion: CountConversion,
        anomalies: tuple[Anomaly, ...],
        disposition: CountDisposition,
        previous: CountRecord | None,
        now: datetime,
    ) -> CountRecord:
        previous_quantity = variance_quantity = variance_percentage = None
        if previous is not None:
            previous_quantity = previous.quantity
            variance_quantity = conversion.quantity - previous.quantity
            base = max(previous.quantity, self._policy.variance.epsilon)
            variance_percentage = (variance_quantity / base * 100).quantize(
                _PERCENT_PRECISION, rounding=ROUND_HALF_UP,
            )
        return CountRecord(
            record_id=uuid4(),
            submission_id=submission.submission_id,
            item_id=item.item_id,
            workflow=item.workflow,
            quantity=conversion.quantity,
            raw_inputs=submission.raw_inputs(),
            disposition=disposition,
            committed_at=now,
            anomalies=anomalies,
            previous_quantity=previous_quantity,
            variance_quantity=variance_quantity,
            variance_percentage=variance_percentage,
            actor_id=submission.actor_id,
            container_instance_id=submission.container_ref,
            gross_weight_grams=conversion.gross_weight_grams,
            notes=submission.notes,
            override_notes=(
                submission.anomaly_notes
                if disposition is CountDisposition.COMMITTED_WITH_OVERRIDE
                else None
            ),
        )

    def _plan_lifecycle(
        self,
        submission: RawCountSubmission,
        item: InventoryItem,
        conversion: CountConversion,
        container: ContainerInstance | None,
        keg_state: KegState | None,
        batch_state: BatchState | None,
        now: datetime,
    ) -> list[LifecycleUpdate]:
        updates: list[LifecycleUpdate] = []
        if container is not None:
            updates.append(self._tracker.plan_usage(container.container_id, now, item.item_id))

        if isinstance(submission, KegWeightSubmission) and submission.keg_tapped_date is not None:
            if keg_state is None or keg_state.tapped_date != submission.keg_tapped_date:
                updates.append(KegTapped(item_id=item.item_id, tapped_date=submission.keg_tapped_date))

        if (
            isinstance(submission, BatchWeightSubmission)
            and submission.batch_ref
            and batch_state is None
            and conversion.batch_date is not None
            and conversion.use_by_date is not None
        ):
            use_by_days = (conversion.use_by_date - conversion.batch_date).days
            if use_by_days > 0:
                updates.append(
                    BatchStarted(
                        batch=BatchState(
                            batch_ref=submission.batch_ref,
                            item_id=item.item_id,
                            batch_date=conversion.batch_date,
                            use_by_days=use_by_days,
                        )
                    )
                )
        return updates

    def _commit(
        self,
        submission: RawCountSubmission,
        reconciliation: CountReconciliation,
        item: InventoryItem,
        conversion: CountConversion,
        anomalies: tuple[Anomaly, ...],
        disposition: CountDisposition,
        previous: CountRecord | None,
        container: ContainerInstance | None,
        keg_state: KegState | None,
        batch_state: BatchState | None,
        now: datetime,
    ) -> CountOutcome:
        record = self._build_record(
            submission, item, conversion, anomalies, disposition, previous, now,
        )
        updates = self._plan_lifecycle(
            submission, item, conversion, container, keg_state, batch_state, now,
        )

        try:
            self._tracker.commit(record, updates)
        except StorageError as exc:
            logger.error(
                "count_commit_failed",
                extra={"error": exc, "record_id": str(record.record_id)},
            )
            raise CommitFailedError(str(submission.submission_id), str(exc)) from exc

        reconciliation = reconciliation.transition(ReconciliationState.COMMITTED)
        logger.info(
            "count_committed",
            extra={
                "record_id": str(record.record_id),
                "quantity": record.quantity,
                "disposition": disposition.value,
                "variance_percentage": record.variance_percentage,
                "anomaly_count": len(anomalies),
                "lifecycle_updates": len(updates),
            },
        )
        return CountOutcome(
            submission=submission,
            reconciliation=reconciliation,
            anomalies=anomalies,
            quantity=record.quantity,
            details=conversion.details(),
            record=record,
        )

    def _notify(self, outcome: CountOutcome) -> None:
        for listener in self._listeners:
            listener.on_disposition(outcome)
