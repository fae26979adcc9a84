"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A count submission can fail for very different reasons: the item is badly
configured, the operator left a field empty, the storage backend is down.
Callers must be able to tell these apart without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        outcome.raise_for_status()
    except MissingRequiredFieldsError as e:
        show_form_errors(e.missing_fields)
    except AnomalyHold as e:
        ask_operator_to_confirm(e.anomalies)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from StockKernelError:

    StockKernelError (base)
    |
    +-- ConfigurationError
    |   +-- UnknownWorkflowError
    |   +-- MissingItemParameterError
    |
    +-- ValidationError
    |   +-- MissingRequiredFieldsError
    |   +-- WorkflowMismatchError
    |   +-- InactiveContainerError
    |   +-- UnknownItemError
    |   +-- UnknownContainerError
    |
    +-- AnomalyHold
    |
    +-- StorageError
    |   +-- RecordNotFoundError
    |
    +-- CommitFailedError
    |
    +-- IllegalReconciliationTransitionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | Item/workflow config inconsistent
                | UNKNOWN_WORKFLOW            | Workflow tag not registered
                | MISSING_ITEM_PARAMETER      | Physical parameter unset/invalid
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Submission unusable as given
                | MISSING_REQUIRED_FIELDS     | Required workflow field absent
                | WORKFLOW_MISMATCH           | Submission variant != item workflow
                | INACTIVE_CONTAINER          | Retired container referenced
                | UNKNOWN_ITEM                | Item missing or deactivated
                | UNKNOWN_CONTAINER           | Container id not registered
----------------|-----------------------------|-----------------------------------------
Hold            | ANOMALY_HOLD                | Count awaits operator confirmation
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_ERROR               | Collaborator failed
                | RECORD_NOT_FOUND            | Container/keg/batch unknown
----------------|-----------------------------|-----------------------------------------
Commit          | COMMIT_FAILED               | Persist failed, nothing committed
----------------|-----------------------------|-----------------------------------------
State machine   | ILLEGAL_TRANSITION          | Programming error: bad transition

===============================================================================
PROPAGATION
===============================================================================

- ConfigurationError / ValidationError -> never retried; surfaced to operator
- AnomalyHold -> expected outcome; operator overrides or declines
- StorageError -> wrapped as CommitFailedError; caller decides on retry
- IllegalReconciliationTransitionError -> bug in the caller; do not catch
"""


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Configuration exceptions


class ConfigurationError(StockKernelError):
    """Item or workflow configuration is internally inconsistent."""

    code: str = "CONFIGURATION_ERROR"


class UnknownWorkflowError(ConfigurationError):
    """Workflow tag is not registered."""

    code: str = "UNKNOWN_WORKFLOW"

    def __init__(self, workflow: str):
        self.workflow = workflow
        super().__init__(f"Unknown counting workflow: {workflow!r}")


class MissingItemParameterError(ConfigurationError):
    """A physical parameter required by the item's workflow is unset or invalid."""

    code: str = "MISSING_ITEM_PARAMETER"

    def __init__(self, item_id: str, parameter: str, reason: str = "not configured"):
        self.item_id = item_id
        self.parameter = parameter
        self.reason = reason
        super().__init__(f"Item {item_id}: parameter '{parameter}' {reason}")


# Validation exceptions


class ValidationError(StockKernelError):
    """Submission cannot be converted as given."""

    code: str = "VALIDATION_ERROR"


class MissingRequiredFieldsError(ValidationError):
    """Submission lacks fields its workflow requires."""

    code: str = "MISSING_REQUIRED_FIELDS"

    def __init__(self, workflow: str, missing_fields: tuple[str, ...], anomalies: tuple = ()):
        self.workflow = workflow
        self.missing_fields = missing_fields
        self.anomalies = anomalies
        super().__init__(
            f"Submission for workflow '{workflow}' missing required fields: "
            f"{', '.join(missing_fields)}"
        )


class WorkflowMismatchError(ValidationError):
    """Submission variant does not match the item's configured workflow."""

    code: str = "WORKFLOW_MISMATCH"

    def __init__(self, item_id: str, expected: str, actual: str):
        self.item_id = item_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Item {item_id} is counted with '{expected}', got a '{actual}' submission"
        )


class InactiveContainerError(ValidationError):
    """Submission references a retired container."""

    code: str = "INACTIVE_CONTAINER"

    def __init__(self, container_id: str):
        self.container_id = container_id
        super().__init__(f"Container {container_id} is retired and cannot be counted with")


class UnknownItemError(ValidationError):
    """Submission references an item that does not exist or is deactivated."""

    code: str = "UNKNOWN_ITEM"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item {item_id} is unknown or inactive")


class UnknownContainerError(ValidationError):
    """Submission references a container id that was never registered."""

    code: str = "UNKNOWN_CONTAINER"

    def __init__(self, container_id: str):
        self.container_id = container_id
        super().__init__(f"Container {container_id} is not registered")


# Anomaly hold


class AnomalyHold(StockKernelError):
    """
    Count is awaiting operator confirmation.

    Not a hard error -- raised only by ``CountOutcome.raise_for_status()``
    so callers that prefer exceptions can branch on it.
    """

    code: str = "ANOMALY_HOLD"

    def __init__(self, submission_id: str, anomalies: tuple):
        self.submission_id = submission_id
        self.anomalies = anomalies
        summary = "; ".join(a.message for a in anomalies)
        super().__init__(f"Count {submission_id} held for confirmation: {summary}")


# Storage exceptions


class StorageError(StockKernelError):
    """The storage collaborator reported a failure."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Storage operation '{operation}' failed: {reason}")


class RecordNotFoundError(StorageError):
    """Requested container, keg or batch state does not exist."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"get_{kind}", f"{kind} {key} not found")


# Commit exceptions


class CommitFailedError(StockKernelError):
    """Persisting a committed count failed; the caller may resubmit."""

    code: str = "COMMIT_FAILED"

    def __init__(self, submission_id: str, reason: str):
        self.submission_id = submission_id
        self.reason = reason
        super().__init__(f"Commit of count {submission_id} failed: {reason}")


# State machine exceptions


class IllegalReconciliationTransitionError(StockKernelError):
    """Programming error: a transition not allowed by the state machine."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, submission_id: str, from_state: str, to_state: str):
        self.submission_id = submission_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Count {submission_id}: illegal transition {from_state} -> {to_state}"
        )
