"""
stock_engines.registry -- Workflow configuration registry.

Responsibility:
    Map each counting workflow to its definition: which submission fields
    are required, which are optional, and the plausible weight/count
    bounds used by the anomaly detector.  Validate that a submission
    carries every required field.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The registry is built
    explicitly from the active ``CountingPolicy`` and passed to its
    consumers; there is no module-level instance.

Invariants enforced:
    - Every ``CountingWorkflow`` has exactly one definition.
    - Every required/optional field name is an attribute of the workflow's
      submission variant (checked at construction).
    - ``validate_required_fields`` is pure and idempotent.

Failure modes:
    - ``UnknownWorkflowError`` for an unregistered workflow tag.
    - ``ConfigurationError`` when a definition names a field the
      submission variant does not have.
    - ``WorkflowMismatchError`` when the submission variant does not
      belong to the requested workflow.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields
from decimal import Decimal
from types import MappingProxyType

from stock_config.schema import CountingPolicy
from stock_kernel.domain.items import CountingWorkflow
from stock_kernel.domain.submissions import SUBMISSION_TYPES, RawCountSubmission
from stock_kernel.exceptions import (
    ConfigurationError,
    UnknownWorkflowError,
    WorkflowMismatchError,
)
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.registry")


@dataclass(frozen=True)
class WorkflowBounds:
    """Plausible range for gross weights and counts; ``None`` is unbounded."""

    min_weight_grams: Decimal | None = None
    max_weight_grams: Decimal | None = None
    min_count: Decimal | None = None
    max_count: Decimal | None = None

    def weight_within(self, grams: Decimal) -> bool:
        if self.min_weight_grams is not None and grams < self.min_weight_grams:
            return False
        if self.max_weight_grams is not None and grams > self.max_weight_grams:
            return False
        return True

    def count_within(self, count: Decimal) -> bool:
        if self.min_count is not None and count < self.min_count:
            return False
        if self.max_count is not None and count > self.max_count:
            return False
        return True


@dataclass(frozen=True)
class WorkflowDefinition:
    workflow: CountingWorkflow
    display_name: str
    required_fields: tuple[str, ...]
    optional_fields: tuple[str, ...] = ()
    bounds: WorkflowBounds = WorkflowBounds()


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


class WorkflowRegistry:
    """Immutable lookup from workflow tag to ``WorkflowDefinition``."""

    def __init__(self, definitions: Iterable[WorkflowDefinition]):
        by_workflow: dict[CountingWorkflow, WorkflowDefinition] = {}
        for definition in definitions:
            if definition.workflow in by_workflow:
                raise ConfigurationError(
                    f"Workflow '{definition.workflow.value}' is defined more than once"
                )
            self._check_fields(definition)
            by_workflow[definition.workflow] = definition
        self._definitions: Mapping[CountingWorkflow, WorkflowDefinition] = (
            MappingProxyType(by_workflow)
        )

    @classmethod
    def from_policy(cls, policy: CountingPolicy) -> WorkflowRegistry:
        """Build the registry from a loaded counting policy."""
        definitions = []
        for wf in policy.workflows:
            definitions.append(
                WorkflowDefinition(
                    workflow=CountingWorkflow(wf.workflow),
                    display_name=wf.display_name,
                    required_fields=wf.required_fields,
                    optional_fields=wf.optional_fields,
                    bounds=WorkflowBounds(
                        min_weight_grams=wf.bounds.min_weight_grams,
                        max_weight_grams=wf.bounds.max_weight_grams,
                        min_count=wf.bounds.min_count,
                        max_count=wf.bounds.max_count,
                    ),
                )
            )
        registry = cls(definitions)
        logger.info(
            "workflow_registry_built",
            extra={
                "policy_name": policy.name,
                "policy_version": policy.version,
                "workflows": [d.workflow.value for d in definitions],
            },
        )
        return registry

    @staticmethod
    def _check_fields(definition: WorkflowDefinition) -> None:
        variant = SUBMISSION_TYPES[definition.workflow]
        known = {f.name for f in fields(variant)}
        unknown = [
            name
            for name in definition.required_fields + definition.optional_fields
            if name not in known
        ]
        if unknown:
            raise ConfigurationError(
                f"Workflow '{definition.workflow.value}' names fields its "
                f"submission does not have: {', '.join(unknown)}"
            )

    @property
    def workflows(self) -> tuple[CountingWorkflow, ...]:
        return tuple(self._definitions)

    def definition(self, workflow: CountingWorkflow | str) -> WorkflowDefinition:
        """Return the definition for ``workflow``.

        Raises:
            UnknownWorkflowError: If the tag is not a registered workflow.
        """
        try:
            key = CountingWorkflow(workflow)
        except ValueError as exc:
            raise UnknownWorkflowError(str(workflow)) from exc
        definition = self._definitions.get(key)
        if definition is None:
            raise UnknownWorkflowError(key.value)
        return definition

    def validate_required_fields(
        self,
        workflow: CountingWorkflow | str,
        submission: RawCountSubmission,
    ) -> tuple[str, ...]:
        """Names of required fields the submission lacks; empty means valid.

        An override without explanatory notes counts as a missing
        ``anomaly_notes`` field.

        Raises:
            UnknownWorkflowError: If ``workflow`` is not registered.
            WorkflowMismatchError: If the submission variant belongs to a
                different workflow.
        """
        definition = self.definition(workflow)
        if type(submission).workflow is not definition.workflow:
            raise WorkflowMismatchError(
                submission.item_id,
                definition.workflow.value,
                type(submission).workflow.value,
            )

        missing = [
            name
            for name in definition.required_fields
            if _is_blank(getattr(submission, name))
        ]
        if submission.anomaly_override and _is_blank(submission.anomaly_notes):
            missing.append("anomaly_notes")
        return tuple(missing)
