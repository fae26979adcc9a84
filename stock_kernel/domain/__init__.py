"""Pure domain value objects for the stock kernel.  ZERO I/O."""

from stock_kernel.domain.anomaly import (
    Anomaly,
    AnomalySeverity,
    AnomalyType,
    has_critical,
)
from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
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
    VerificationStatus,
    apply_container_update,
)
from stock_kernel.domain.items import CountingWorkflow, InventoryItem
from stock_kernel.domain.reconciliation import (
    RECONCILIATION_TRANSITIONS,
    TERMINAL_RECONCILIATION_STATES,
    CountOutcome,
    CountReconciliation,
    ReconciliationState,
)
from stock_kernel.domain.records import CountDisposition, CountRecord
from stock_kernel.domain.submissions import (
    SUBMISSION_TYPES,
    BatchWeightSubmission,
    BottleHybridSubmission,
    ContainerWeightSubmission,
    KegWeightSubmission,
    RawCountSubmission,
    UnitCountSubmission,
)

__all__ = [
    "Anomaly",
    "AnomalySeverity",
    "AnomalyType",
    "has_critical",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "BatchStarted",
    "BatchState",
    "ContainerInstance",
    "ContainerRegistered",
    "ContainerRetired",
    "ContainerReweighed",
    "ContainerUsed",
    "KegState",
    "KegTapped",
    "LifecycleUpdate",
    "VerificationStatus",
    "apply_container_update",
    "CountingWorkflow",
    "InventoryItem",
    "RECONCILIATION_TRANSITIONS",
    "TERMINAL_RECONCILIATION_STATES",
    "CountOutcome",
    "CountReconciliation",
    "ReconciliationState",
    "CountDisposition",
    "CountRecord",
    "SUBMISSION_TYPES",
    "BatchWeightSubmission",
    "BottleHybridSubmission",
    "ContainerWeightSubmission",
    "KegWeightSubmission",
    "RawCountSubmission",
    "UnitCountSubmission",
]
