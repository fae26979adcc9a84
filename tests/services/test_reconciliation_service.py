"""
Tests for CountReconciler.

Covers:
- The concrete counting scenarios (container, bottles, keg, missing field,
  significant variance)
- Hold, override and decline
- Rejection paths (unknown item/container, retired container, mismatch,
  unconfigured item)
- Commit ordering and CommitFailedError
- Disposition listeners, keyed serialization and audit logging
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.domain.anomaly import AnomalySeverity, AnomalyType
from stock_kernel.domain.containers import ContainerInstance
from stock_kernel.domain.items import CountingWorkflow, InventoryItem
from stock_kernel.domain.reconciliation import ReconciliationState
from stock_kernel.domain.records import CountDisposition, CountRecord
from stock_kernel.domain.submissions import (
    BatchWeightSubmission,
    BottleHybridSubmission,
    ContainerWeightSubmission,
    KegWeightSubmission,
    UnitCountSubmission,
)
from stock_kernel.exceptions import (
    CommitFailedError,
    IllegalReconciliationTransitionError,
    InactiveContainerError,
    MissingItemParameterError,
    MissingRequiredFieldsError,
    StorageError,
    UnknownContainerError,
    UnknownItemError,
    ValidationError,
    WorkflowMismatchError,
)
from stock_kernel.logging_config import StructuredFormatter, configure_logging
from stock_kernel.services.reconciliation_service import CountReconciler
from stock_kernel.services.serialization import KeyedLocks

S = ReconciliationState


def _flour_count(gross: str, container_id: str = "C-1", **kwargs) -> ContainerWeightSubmission:
    return ContainerWeightSubmission(
        item_id="flour",
        container_instance_id=container_id,
        gross_weight_grams=Decimal(gross),
        actor_id=kwargs.pop("actor_id", "alice"),
        **kwargs,
    )


def _lemon_count(quantity: str) -> UnitCountSubmission:
    return UnitCountSubmission(item_id="lemons", counted_quantity=Decimal(quantity), actor_id="alice")


def _seed(store, item_id: str, quantity: str) -> None:
    store.seed_records({
        item_id: [
            CountRecord(
                record_id=uuid4(),
                submission_id=uuid4(),
                item_id=item_id,
                workflow=CountingWorkflow.UNIT_COUNT,
                quantity=Decimal(quantity),
                raw_inputs={"counted_quantity": quantity},
                disposition=CountDisposition.COMMITTED,
                committed_at=datetime(2024, 5, 31, tzinfo=UTC),
            )
        ]
    })


def _types(outcome):
    return [a.anomaly_type for a in outcome.anomalies]


class RecordingListener:
    def __init__(self):
        self.outcomes = []

    def on_disposition(self, outcome):
        self.outcomes.append(outcome)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestContainerWeightCount:
    def test_clean_count_commits(self, reconciler, store, tracker, bin_container):
        """tare 850 g, gross 2350 g, 1 g/unit -> 1500 units, no anomaly."""
        outcome = reconciler.submit(_flour_count("2350"))

        assert outcome.is_committed
        assert outcome.anomalies == ()
        assert outcome.reconciliation.history == (
            S.DRAFT, S.VALIDATING, S.AUTO_COMMITTABLE, S.COMMITTED,
        )
        record = outcome.raise_for_status()
        assert record.quantity == Decimal("1500")
        assert record.disposition is CountDisposition.COMMITTED
        assert record.gross_weight_grams == Decimal("2350")
        assert record.container_instance_id == "C-1"
        assert record.actor_id == "alice"
        assert record.raw_inputs == {
            "container_instance_id": "C-1",
            "gross_weight_grams": "2350",
        }
        assert record.previous_quantity is None
        assert store.record_count == 1

    def test_commit_records_container_usage(self, reconciler, tracker, bin_container, clock):
        reconciler.submit(_flour_count("2350"))

        container = tracker.container("C-1")
        assert container.times_used == 1
        assert container.last_used_date == clock.now()
        assert container.last_item_id == "flour"

    def test_second_count_carries_variance(self, reconciler, store, bin_container):
        reconciler.submit(_flour_count("2350"))
        outcome = reconciler.submit(_flour_count("2500"))

        record = outcome.raise_for_status()
        assert record.previous_quantity == Decimal("1500")
        assert record.variance_quantity == Decimal("150")
        assert record.variance_percentage == Decimal("10.00")
        assert store.get_latest_count_record("flour") == record

    def test_weight_beyond_container_capacity_is_held(self, reconciler, store, tracker, clock):
        tracker.register_container(
            ContainerInstance(
                container_id="C-2",
                tare_weight_grams=Decimal("850"),
                last_weighed_date=clock.now(),
                category="bulk_bin",
                max_capacity_ml=Decimal("1000"),
            )
        )

        outcome = reconciler.submit(_flour_count("2500", container_id="C-2"))

        assert outcome.is_held
        assert _types(outcome) == [AnomalyType.IMPOSSIBLE_WEIGHT]
        assert store.record_count == 0



class TestUnitCount:
    def test_integer_count_commits(self, reconciler, store):
        outcome = reconciler.submit(
            UnitCountSubmission(item_id="lemons", counted_quantity=40, actor_id="alice")
        )

        record = outcome.raise_for_status()
        assert record.quantity == Decimal("40")
        assert store.get_latest_count_record("lemons") == record


class TestBottleCount:

    def test_partial_bottle_commits(self, reconciler):
        outcome = reconciler.submit(
            BottleHybridSubmission(
                item_id="house-red",
                full_bottles_count=3,
                partial_bottle_weights=(Decimal("1000"),),
            )
        )

        assert outcome.is_committed
        assert outcome.quantity == Decimal("3.5")
        assert outcome.details["partial_equivalents"] == ["0.5000"]

    def test_overweight_partial_is_held(self, reconciler, store):
        outcome = reconciler.submit(
            BottleHybridSubmission(
                item_id="house-red",
                full_bottles_count=3,
                partial_bottle_weights=(Decimal("1600"),),
            )
        )

        assert outcome.is_held
        assert _types(outcome) == [AnomalyType.WEIGHT_OUT_OF_BOUNDS]
        assert outcome.quantity == Decimal("4")
        assert store.record_count == 0


class TestKegCount:
    def test_keg_commits_and_tracks_tap_date(self, reconciler, tracker):
        """empty 13300 g, 50 L, gross 38300 g, tapped 10 days ago."""
        outcome = reconciler.submit(
            KegWeightSubmission(
                item_id="lager",
                gross_weight_grams=Decimal("38300"),
                keg_tapped_date=date(2024, 5, 22),
            )
        )

        record = outcome.raise_for_status()
        assert record.quantity == Decimal("24.7525")
        assert outcome.details["fill_percentage"] == "49.5050"
        assert outcome.details["freshness_status"] == "declining"
        assert tracker.keg_state("lager").tapped_date == date(2024, 5, 22)

    def test_expired_keg_is_held(self, reconciler, tracker):
        tracker.tap_keg("lager", date(2024, 5, 1))

        outcome = reconciler.submit(
            KegWeightSubmission(item_id="lager", gross_weight_grams=Decimal("38300"))
        )

        assert outcome.is_held
        assert _types(outcome) == [AnomalyType.KEG_FRESHNESS_EXPIRED]


class TestMissingRequiredField:
    def test_rejected_without_conversion(self, reconciler, store, monkeypatch):
        def _no_conversion(*args, **kwargs):
            raise AssertionError("conversion must not run for an invalid submission")

        monkeypatch.setattr(
            "stock_kernel.services.reconciliation_service.convert_submission", _no_conversion,
        )

        outcome = reconciler.submit(
            ContainerWeightSubmission(item_id="flour", gross_weight_grams=Decimal("2350"))
        )

        assert outcome.is_rejected
        assert outcome.reconciliation.history == (S.DRAFT, S.VALIDATING, S.REJECTED)
        assert isinstance(outcome.error, MissingRequiredFieldsError)
        assert outcome.error.missing_fields == ("container_instance_id",)
        assert _types(outcome) == [AnomalyType.MISSING_REQUIRED_FIELD]
        assert outcome.anomalies[0].severity is AnomalySeverity.CRITICAL
        assert store.record_count == 0
        with pytest.raises(MissingRequiredFieldsError):
            outcome.raise_for_status()


class TestSignificantVariance:
    def test_forty_percent_drop_is_held(self, reconciler, store):
        """Prior 100, candidate 60: held for confirmation."""
        _seed(store, "lemons", "100")

        outcome = reconciler.submit(_lemon_count("60"))

        assert outcome.is_held
        assert _types(outcome) == [AnomalyType.SIGNIFICANT_VARIANCE]
        assert outcome.anomalies[0].severity is AnomalySeverity.WARNING
        assert outcome.quantity == Decimal("60")
        assert store.record_count == 1

    def test_sixty_percent_drop_is_critical(self, reconciler, store):
        _seed(store, "lemons", "100")

        outcome = reconciler.submit(_lemon_count("40"))

        assert outcome.is_held
        assert outcome.anomalies[0].severity is AnomalySeverity.CRITICAL

    @pytest.mark.parametrize(
        "candidate,committed",
        [("114.99", True), ("115", True), ("115.01", False)],
    )
    def test_warning_threshold_is_exclusive(self, reconciler, store, candidate, committed):
        _seed(store, "lemons", "100")

        outcome = reconciler.submit(_lemon_count(candidate))

        assert outcome.is_committed is committed
        assert outcome.is_held is (not committed)


# ---------------------------------------------------------------------------
# Hold / override / decline
# ---------------------------------------------------------------------------


class TestOverride:
    def test_empty_container_override(self, reconciler, store, tracker, bin_container):
        held = reconciler.submit(_flour_count("855"))

        assert held.is_held
        assert _types(held) == [AnomalyType.EMPTY_CONTAINER]
        assert held.messages()[0][1].startswith("If intentionally empty")
        assert tracker.container("C-1").times_used == 0

        outcome = reconciler.override(held, "Bin emptied for deep clean", actor_id="manager")

        record = outcome.raise_for_status()
        assert record.disposition is CountDisposition.COMMITTED_WITH_OVERRIDE
        assert record.override_notes == "Bin emptied for deep clean"
        assert record.actor_id == "manager"
        assert [a.anomaly_type for a in record.anomalies] == [AnomalyType.EMPTY_CONTAINER]
        assert record.quantity == Decimal("5")
        assert outcome.reconciliation.history == (
            S.DRAFT, S.VALIDATING, S.AWAITING_CONFIRMATION, S.VALIDATING, S.COMMITTED,
        )
        assert store.record_count == 1
        assert tracker.container("C-1").times_used == 1

    def test_override_commits_critical(self, reconciler, store, bin_container):
        held = reconciler.submit(_flour_count("500"))
        assert held.anomalies[0].severity is AnomalySeverity.CRITICAL

        outcome = reconciler.override(held, "Scale recalibrated, reading confirmed")

        assert outcome.disposition is CountDisposition.COMMITTED_WITH_OVERRIDE
        assert outcome.record.quantity == Decimal("0")

    def test_override_with_blank_notes_is_rejected(self, reconciler, store, bin_container):
        held = reconciler.submit(_flour_count("855"))

        outcome = reconciler.override(held, "   ")

        assert outcome.is_rejected
        assert outcome.error.missing_fields == ("anomaly_notes",)
        assert store.record_count == 0

    def test_override_requires_held_outcome(self, reconciler, bin_container):
        committed = reconciler.submit(_flour_count("2350"))

        with pytest.raises(IllegalReconciliationTransitionError):
            reconciler.override(committed, "again")

    def test_submission_flag_overrides_on_first_pass(self, reconciler, bin_container):
        outcome = reconciler.submit(
            _flour_count("855", anomaly_override=True, anomaly_notes="Known empty")
        )

        assert outcome.reconciliation.history == (
            S.DRAFT, S.VALIDATING, S.COMMITTED,
        )
        assert outcome.disposition is CountDisposition.COMMITTED_WITH_OVERRIDE


class TestDecline:
    def test_decline_discards(self, reconciler, store, tracker, bin_container):
        held = reconciler.submit(_flour_count("855"))

        declined = reconciler.decline(held, "Will recount after delivery")

        assert declined.is_rejected
        assert declined.decline_reason == "Will recount after delivery"
        assert declined.record is None
        assert store.record_count == 0
        assert tracker.container("C-1").times_used == 0
        with pytest.raises(ValidationError, match="declined"):
            declined.raise_for_status()

    def test_declined_outcome_cannot_be_overridden(self, reconciler, bin_container):
        declined = reconciler.decline(reconciler.submit(_flour_count("855")), "no")

        with pytest.raises(IllegalReconciliationTransitionError):
            reconciler.override(declined, "changed my mind")

    def test_decline_requires_held_outcome(self, reconciler, bin_container):
        committed = reconciler.submit(_flour_count("2350"))

        with pytest.raises(IllegalReconciliationTransitionError):
            reconciler.decline(committed, "too late")


class TestAutoCommitLowSeverity:
    def _reconciler(self, policy, registry, catalog, store, clock, tracker):
        return CountReconciler(
            policy=replace(policy, auto_commit_low_severity=True),
            registry=registry,
            catalog=catalog,
            store=store,
            clock=clock,
            tracker=tracker,
        )

    def test_warning_commits(self, policy, registry, catalog, store, clock, tracker, bin_container):
        reconciler = self._reconciler(policy, registry, catalog, store, clock, tracker)

        outcome = reconciler.submit(_flour_count("855"))

        assert outcome.is_committed
        assert outcome.disposition is CountDisposition.COMMITTED
        assert outcome.reconciliation.history == (S.DRAFT, S.VALIDATING, S.COMMITTED)
        assert [a.anomaly_type for a in outcome.record.anomalies] == [AnomalyType.EMPTY_CONTAINER]

    def test_critical_still_held(self, policy, registry, catalog, store, clock, tracker, bin_container):
        reconciler = self._reconciler(policy, registry, catalog, store, clock, tracker)

        outcome = reconciler.submit(_flour_count("500"))

        assert outcome.is_held


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


class TestRejections:
    def test_unknown_item(self, reconciler):
        outcome = reconciler.submit(UnitCountSubmission(item_id="saffron", counted_quantity=Decimal("1")))

        assert outcome.is_rejected
        assert isinstance(outcome.error, UnknownItemError)

    def test_inactive_item(self, reconciler, catalog, lemons):
        catalog.add(lemons.deactivate())

        outcome = reconciler.submit(_lemon_count("5"))

        assert isinstance(outcome.error, UnknownItemError)

    def test_unknown_container(self, reconciler, bin_container):
        outcome = reconciler.submit(_flour_count("2350", container_id="C-404"))

        assert outcome.is_rejected
        assert isinstance(outcome.error, UnknownContainerError)

    def test_retired_container(self, reconciler, tracker, store, bin_container):
        tracker.retire("C-1", "cracked lid")

        outcome = reconciler.submit(_flour_count("2350"))

        assert isinstance(outcome.error, InactiveContainerError)
        assert store.record_count == 0

    def test_variant_mismatch(self, reconciler):
        outcome = reconciler.submit(UnitCountSubmission(item_id="flour", counted_quantity=Decimal("3")))

        assert isinstance(outcome.error, WorkflowMismatchError)

    def test_item_missing_conversion_parameter(self, reconciler, catalog, bin_container):
        catalog.add(
            InventoryItem(
                item_id="flour",
                name="Flour",
                workflow=CountingWorkflow.CONTAINER_WEIGHT,
            )
        )

        outcome = reconciler.submit(_flour_count("2350"))

        assert outcome.is_rejected
        assert isinstance(outcome.error, MissingItemParameterError)
        assert outcome.error.parameter == "typical_unit_weight_grams"


class TestContainerVerification:
    def test_overdue_container_holds(self, reconciler, clock, bin_container):
        clock.advance(days=200)

        outcome = reconciler.submit(_flour_count("2350"))

        assert outcome.is_held
        assert _types(outcome) == [AnomalyType.CONTAINER_VERIFICATION_OVERDUE]

    def test_reweigh_clears_overdue(self, reconciler, clock, tracker, bin_container):
        clock.advance(days=200)
        tracker.reweigh("C-1", Decimal("850"))

        assert reconciler.submit(_flour_count("2350")).is_committed


class TestBatchCount:
    def test_new_batch_is_started(self, reconciler, tracker, bin_container):
        outcome = reconciler.submit(
            BatchWeightSubmission(
                item_id="tomato-sauce",
                container_instance_id="C-1",
                gross_weight_grams=Decimal("3850"),
                batch_ref="SAUCE-0601",
                batch_date=date(2024, 6, 1),
            )
        )

        assert outcome.is_committed
        assert outcome.quantity == Decimal("3000")
        batch = tracker.batch_state("SAUCE-0601")
        assert batch.use_by_days == 5
        assert batch.use_by_date == date(2024, 6, 6)

    def test_expired_batch_is_critical(self, reconciler, tracker, bin_container):
        tracker.start_batch("SAUCE-0520", "tomato-sauce", date(2024, 5, 20), 5)

        outcome = reconciler.submit(
            BatchWeightSubmission(
                item_id="tomato-sauce",
                container_instance_id="C-1",
                gross_weight_grams=Decimal("3850"),
                batch_ref="SAUCE-0520",
            )
        )

        assert outcome.is_held
        assert _types(outcome) == [AnomalyType.BATCH_EXPIRED]
        assert outcome.anomalies[0].severity is AnomalySeverity.CRITICAL


# ---------------------------------------------------------------------------
# Commit failures
# ---------------------------------------------------------------------------


class TestCommitFailure:
    def test_record_persist_failure(self, reconciler, store, tracker, bin_container):
        store.fail_on("persist_count_record")

        with pytest.raises(CommitFailedError) as exc_info:
            reconciler.submit(_flour_count("2350"))

        assert isinstance(exc_info.value.__cause__, StorageError)
        assert store.record_count == 0
        assert tracker.container("C-1").times_used == 0

    def test_lifecycle_persist_failure_leaves_nothing_behind(
        self, reconciler, store, tracker, bin_container,
    ):
        store.fail_on("persist_lifecycle_update")
        submission = _flour_count("2350")

        with pytest.raises(CommitFailedError) as exc_info:
            reconciler.submit(submission)

        assert exc_info.value.submission_id == str(submission.submission_id)
        assert store.record_count == 0
        assert store.get_latest_count_record("flour") is None
        assert tracker.container("C-1").times_used == 0

    def test_failed_commit_can_be_resubmitted(self, reconciler, store, tracker, bin_container):
        store.fail_on("persist_lifecycle_update")
        submission = _flour_count("2350")
        with pytest.raises(CommitFailedError):
            reconciler.submit(submission)

        outcome = reconciler.submit(submission)

        assert outcome.state is S.COMMITTED
        assert store.record_count == 1
        assert store.get_latest_count_record("flour").submission_id == submission.submission_id
        assert tracker.container("C-1").times_used == 1


    def test_history_read_failure_propagates(self, reconciler, store):
        store.fail_on("list_recent_count_records")

        with pytest.raises(StorageError):
            reconciler.submit(_lemon_count("5"))


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class TestListeners:
    def test_terminal_outcomes_notified(self, policy, registry, catalog, store, clock, tracker, bin_container):
        listener = RecordingListener()
        reconciler = CountReconciler(
            policy=policy,
            registry=registry,
            catalog=catalog,
            store=store,
            clock=clock,
            tracker=tracker,
            listeners=[listener],
        )

        committed = reconciler.submit(_flour_count("2350"))
        held = reconciler.submit(_flour_count("855"))
        rejected = reconciler.submit(_flour_count("2350", container_id="C-404"))
        declined = reconciler.decline(held, "recount")

        assert listener.outcomes == [committed, rejected, declined]


class TestSerialization:
    def test_concurrent_counts_all_commit(self, policy, registry, catalog, store, clock, tracker):
        reconciler = CountReconciler(
            policy=policy,
            registry=registry,
            catalog=catalog,
            store=store,
            clock=clock,
            tracker=tracker,
            locks=KeyedLocks(),
        )

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(lambda _: reconciler.submit(_lemon_count("12")), range(20)))

        assert all(o.is_committed for o in outcomes)
        assert store.record_count == 20
        variances = [o.record.variance_quantity for o in outcomes]
        assert variances.count(None) == 1


class TestAuditLogging:
    def test_submission_scoped_events(self, reconciler, bin_container):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        configure_logging(handler=handler)

        submission = _flour_count("2350")
        reconciler.submit(submission)

        records = [json.loads(line) for line in stream.getvalue().splitlines() if line]
        events = [r["message"] for r in records if r["logger"].startswith("stock_kernel.services")]
        assert events[0] == "count_submitted"
        assert events[-1] == "count_committed"
        committed = next(r for r in records if r["message"] == "count_committed")
        assert committed["submission_id"] == str(submission.submission_id)
        assert committed["item_id"] == "flour"
        assert committed["container_id"] == "C-1"
        assert committed["disposition"] == "committed"

    def test_rejection_logs_error_fields(self, reconciler):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        configure_logging(handler=handler)

        reconciler.submit(
            ContainerWeightSubmission(item_id="flour", gross_weight_grams=Decimal("2350"))
        )

        records = [json.loads(line) for line in stream.getvalue().splitlines() if line]
        rejected = next(r for r in records if r["message"] == "count_rejected")
        assert rejected["exc_code"] == "MISSING_REQUIRED_FIELDS"
        assert rejected["exc_missing_fields"] == ["container_instance_id"]
        assert rejected["exc_anomaly_types"] == ["missing_required_field"]
        assert rejected["exc_critical"] is True
        assert "traceback" not in rejected

    def test_commit_failure_logs_storage_operation(self, reconciler, store, bin_container):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream))
        store.fail_on("persist_lifecycle_update")

        with pytest.raises(CommitFailedError):
            reconciler.submit(_flour_count("2350"))

        records = [json.loads(line) for line in stream.getvalue().splitlines() if line]
        failed = next(r for r in records if r["message"] == "count_commit_failed")
        assert failed["exc_code"] == "STORAGE_ERROR"
        assert failed["exc_operation"] == "persist_lifecycle_update"
