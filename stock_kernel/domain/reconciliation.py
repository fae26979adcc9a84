"""
Count reconciliation domain types (``stock_kernel.domain.reconciliation``).

Responsibility
--------------
The lifecycle state machine a single count submission moves through, and
the ``CountOutcome`` returned to callers at the end of each pass.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  The
``CountReconciler`` service drives the machine; this module only decides
which moves are legal.

Invariants enforced
-------------------
* ``RECONCILIATION_TRANSITIONS`` defines the only valid transitions.
  Terminal states have no outgoing edges.
* A submission is committed at most once: ``committed`` is terminal.
* A rejected submission is never committed: ``rejected`` is terminal.

Failure modes
-------------
* ``IllegalReconciliationTransitionError`` on any move not in the table.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from stock_kernel.domain.anomaly import Anomaly
from stock_kernel.domain.records import CountDisposition, CountRecord
from stock_kernel.domain.submissions import RawCountSubmission
from stock_kernel.exceptions import (
    AnomalyHold,
    IllegalReconciliationTransitionError,
    StockKernelError,
    ValidationError,
)


class ReconciliationState(str, Enum):
    DRAFT = "draft"
    VALIDATING = "validating"
    AUTO_COMMITTABLE = "auto_committable"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    REJECTED = "rejected"
    COMMITTED = "committed"


RECONCILIATION_TRANSITIONS: dict[ReconciliationState, frozenset[ReconciliationState]] = {
    ReconciliationState.DRAFT: frozenset({
        ReconciliationState.VALIDATING,
    }),
    ReconciliationState.VALIDATING: frozenset({
        ReconciliationState.AUTO_COMMITTABLE,
        ReconciliationState.AWAITING_CONFIRMATION,
        ReconciliationState.REJECTED,
        ReconciliationState.COMMITTED,
    }),
    ReconciliationState.AUTO_COMMITTABLE: frozenset({
        ReconciliationState.COMMITTED,
    }),
    ReconciliationState.AWAITING_CONFIRMATION: frozenset({
        ReconciliationState.VALIDATING,
        ReconciliationState.COMMITTED,
        ReconciliationState.REJECTED,
    }),
    ReconciliationState.REJECTED: frozenset(),
    ReconciliationState.COMMITTED: frozenset(),
}

TERMINAL_RECONCILIATION_STATES: frozenset[ReconciliationState] = frozenset({
    ReconciliationState.REJECTED,
    ReconciliationState.COMMITTED,
})


def can_transition(from_state: ReconciliationState, to_state: ReconciliationState) -> bool:
    return to_state in RECONCILIATION_TRANSITIONS[from_state]


@dataclass(frozen=True)
class CountReconciliation:
    """Where one submission is in its lifecycle, plus the path it took."""

    submission_id: UUID
    state: ReconciliationState = ReconciliationState.DRAFT
    history: tuple[ReconciliationState, ...] = (ReconciliationState.DRAFT,)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_RECONCILIATION_STATES

    def transition(self, to_state: ReconciliationState) -> CountReconciliation:
        """Return a copy in ``to_state``, or raise if the move is illegal."""
        if not can_transition(self.state, to_state):
            raise IllegalReconciliationTransitionError(
                str(self.submission_id), self.state.value, to_state.value,
            )
        return replace(self, state=to_state, history=self.history + (to_state,))


@dataclass(frozen=True)
class CountOutcome:
    """Result of one reconciliation pass.

    Exactly one of ``record`` (committed), ``error`` (rejected) or a
    non-empty ``anomalies`` tuple with neither (held) describes the
    outcome.
    """

    submission: RawCountSubmission
    reconciliation: CountReconciliation
    anomalies: tuple[Anomaly, ...] = ()
    quantity: Decimal | None = None
    details: dict[str, Any] | None = None
    record: CountRecord | None = None
    error: StockKernelError | None = None
    decline_reason: str | None = None

    @property
    def state(self) -> ReconciliationState:
        return self.reconciliation.state

    @property
    def is_committed(self) -> bool:
        return self.state is ReconciliationState.COMMITTED

    @property
    def is_held(self) -> bool:
        return self.state is ReconciliationState.AWAITING_CONFIRMATION

    @property
    def is_rejected(self) -> bool:
        return self.state is ReconciliationState.REJECTED

    @property
    def disposition(self) -> CountDisposition | None:
        return self.record.disposition if self.record is not None else None

    def messages(self) -> tuple[tuple[str, str], ...]:
        """(message, suggested_action) for every anomaly on this outcome."""
        return tuple((a.message, a.suggested_action) for a in self.anomalies)

    def raise_for_status(self) -> CountRecord:
        """Return the committed record, or raise what kept it from committing."""
        if self.record is not None and self.is_committed:
            return self.record
        if self.error is not None:
            raise self.error
        if self.is_held:
            raise AnomalyHold(str(self.submission.submission_id), self.anomalies)
        if self.is_rejected:
            raise ValidationError(
                f"Count {self.submission.submission_id} declined: {self.decline_reason}"
            )
        raise IllegalReconciliationTransitionError(
            str(self.submission.submission_id),
            self.state.value,
            ReconciliationState.COMMITTED.value,
        )
