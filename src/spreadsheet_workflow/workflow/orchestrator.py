"""Workflow orchestrator: an ordered chain of sheet steps.

A workflow starts empty, gets one blank single sheet, and grows by
appending steps derived from the last one:

    single / aggregation -> 3D stack
    3D stack             -> aggregation
    any                  -> LLM pipe

Whenever a step's data changes, the step right after it is recomputed
(see :mod:`spreadsheet_workflow.workflow.derivation`). Propagation stops
there: the recomputed step does not cascade further.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from spreadsheet_workflow.config import settings
from spreadsheet_workflow.services.collaborators import Collaborators
from spreadsheet_workflow.sheets.aggregation import AggregationSheet
from spreadsheet_workflow.sheets.llm_pipe import LLMPipeSheet
from spreadsheet_workflow.sheets.single import SingleSheet
from spreadsheet_workflow.sheets.three_d import ThreeDStack
from spreadsheet_workflow.storage.spreadsheet_storage import SpreadsheetStorage
from spreadsheet_workflow.utils.exceptions import (
    InvalidStepTransitionError,
    StepNotFoundError,
)
from spreadsheet_workflow.utils.logging import LogContext, ProgressTracker, get_logger
from spreadsheet_workflow.workflow.derivation import derive_llm_rows, derive_next
from spreadsheet_workflow.workflow.steps import RunnableStep, StepKind

logger = get_logger(__name__)


class WorkflowState(str, Enum):
    """Lifecycle state of a workflow. There is no terminal state."""

    EMPTY = "empty"
    ACTIVE = "active"


@dataclass
class StepOutcome:
    """Result of running one step during run_all."""

    index: int
    kind: StepKind
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "kind": self.kind.value,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class RunAllReport:
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(outcome.success for outcome in self.outcomes)

    @property
    def failed_steps(self) -> list[int]:
        return [outcome.index for outcome in self.outcomes if not outcome.success]


class Workflow:
    """Ordered list of steps with one-hop propagation.

    Args:
        collaborators: Client used by every step for remote actions.
        storage: Optional persisted state backing the workflow's first
            3D stack.
        settle_seconds: Pause between steps in run_all. Defaults to
            settings.run_all_settle_seconds.
        workflow_id: Identifier, generated when omitted.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        storage: SpreadsheetStorage | None = None,
        settle_seconds: float | None = None,
        workflow_id: str | None = None,
    ) -> None:
        self.collaborators = collaborators
        self.storage = storage
        self.settle_seconds = (
            settle_seconds
            if settle_seconds is not None
            else settings.run_all_settle_seconds
        )
        self.workflow_id = workflow_id or str(uuid.uuid4())
        self.created_at = datetime.now(UTC)
        self._steps: list[RunnableStep] = []

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return WorkflowState.ACTIVE if self._steps else WorkflowState.EMPTY

    @property
    def steps(self) -> list[RunnableStep]:
        return list(self._steps)

    def step(self, index: int) -> RunnableStep:
        """Return the step at ``index``.

        Raises:
            StepNotFoundError: If the index is out of range.
        """
        if not 0 <= index < len(self._steps):
            raise StepNotFoundError(index, len(self._steps))
        return self._steps[index]

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "state": self.state.value,
            "created_at": self.created_at,
            "steps": [step.to_dict() for step in self._steps],
        }

    # ------------------------------------------------------------------
    # Building the chain
    # ------------------------------------------------------------------

    def _append(self, step: RunnableStep) -> RunnableStep:
        step.add_listener(self._on_step_changed)
        self._steps.append(step)
        logger.info(
            "Step appended",
            workflow_id=self.workflow_id,
            index=len(self._steps) - 1,
            kind=step.kind.value,
        )
        return step

    def _require_last(self, index: int, action: str) -> RunnableStep:
        source = self.step(index)
        if index != len(self._steps) - 1:
            raise InvalidStepTransitionError(
                f"Cannot {action} from step {index}: only the last step "
                f"({len(self._steps) - 1}) accepts new steps",
                step_index=index,
            )
        return source

    def create_initial_sheet(self) -> SingleSheet:
        """Move from empty to active with one blank single sheet."""
        if self._steps:
            raise InvalidStepTransitionError(
                "Workflow already has steps", details={"step_count": len(self._steps)}
            )
        sheet = SingleSheet(self.collaborators)
        self._append(sheet)
        return sheet

    def append_three_d(self, index: int) -> ThreeDStack:
        """Append a 3D stack with one sub-sheet per row of step ``index``."""
        source = self._require_last(index, "create a 3D sheet")
        if source.kind not in (StepKind.SINGLE, StepKind.AGGREGATION):
            raise InvalidStepTransitionError(
                f"A 3D sheet cannot follow a {source.kind.value} step",
                step_index=index,
                details={"source_kind": source.kind.value},
            )

        headers, rows = source.source_rows()
        stack = ThreeDStack.from_rows(self.collaborators, headers, rows)
        if self.storage is not None and not self._storage_in_use():
            stack.bind_storage(self.storage)
        self._append(stack)
        return stack

    def append_aggregation(self, index: int, aggregation_prompt: str = "") -> AggregationSheet:
        """Append an aggregation over the 3D stack at ``index``."""
        source = self._require_last(index, "create an aggregation")
        if not isinstance(source, ThreeDStack):
            raise InvalidStepTransitionError(
                f"An aggregation cannot follow a {source.kind.value} step",
                step_index=index,
                details={"source_kind": source.kind.value},
            )

        sheet = AggregationSheet(
            self.collaborators, source, aggregation_prompt=aggregation_prompt
        )
        self._append(sheet)
        return sheet

    def append_llm_pipe(self, index: int, prompt: str = "") -> LLMPipeSheet:
        """Append an LLM pipe over the rows of step ``index``."""
        source = self._require_last(index, "create an LLM pipe")
        headers, rows = source.source_rows()
        sheet = LLMPipeSheet(
            self.collaborators, grid=derive_llm_rows(headers, rows), prompt=prompt
        )
        self._append(sheet)
        return sheet

    def append_step(self, kind: StepKind, index: int | None = None) -> RunnableStep:
        """Append a step of ``kind`` from ``index`` (the last step by default)."""
        if index is None:
            index = len(self._steps) - 1
        if kind is StepKind.THREE_D:
            return self.append_three_d(index)
        if kind is StepKind.AGGREGATION:
            return self.append_aggregation(index)
        if kind is StepKind.LLM_PIPE:
            return self.append_llm_pipe(index)
        if kind is StepKind.SINGLE and not self._steps:
            return self.create_initial_sheet()
        raise InvalidStepTransitionError(
            "A single sheet can only start a workflow",
            step_index=index,
            details={"kind": kind.value},
        )

    # ------------------------------------------------------------------
    # Editing and propagation
    # ------------------------------------------------------------------

    def edit_step(self, index: int, data: Any) -> None:
        """Replace the data of step ``index`` and recompute the next step."""
        self.step(index).replace_data(data)

    def _on_step_changed(self, step: RunnableStep) -> None:
        index = next((i for i, s in enumerate(self._steps) if s is step), None)
        if index is not None:
            self._propagate(index)

    def _propagate(self, index: int) -> None:
        if index + 1 >= len(self._steps):
            return

        current = self._steps[index]
        following = self._steps[index + 1]
        derived = derive_next(
            current.kind,
            following.kind,
            current.source_rows(),
            following.snapshot(),
            following.get_headers(),
        )
        if derived is None:
            return

        # Without notification, so the change stops at this step.
        following.replace_data(derived, notify=False)
        logger.debug(
            "Propagated step change",
            workflow_id=self.workflow_id,
            source_index=index,
            target_kind=following.kind.value,
        )

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run_step(self, index: int, operation: str = "run") -> None:
        """Run one operation of step ``index``.

        ``operation`` is ``run`` (everything the step supports), ``find``,
        ``cells``, ``aggregation`` or ``llm``.
        """
        step = self.step(index)
        with LogContext(workflow_id=self.workflow_id, step_index=index):
            if operation == "find":
                await step.run_find()
            elif operation == "cells":
                await step.run_cells()
            elif operation == "aggregation":
                await step.run_aggregation()
            elif operation == "llm":
                await step.run_llm()
            else:
                await step.run()

    async def run_all(self) -> RunAllReport:
        """Run every step in order, each settling before the next starts.

        A failing step is logged and recorded; later steps still run.
        """
        report = RunAllReport()
        steps = list(self._steps)
        with LogContext(workflow_id=self.workflow_id):
            logger.info("Running workflow", steps=len(steps))
            tracker = ProgressTracker(logger, "Workflow steps", total=len(steps))
            for index, step in enumerate(steps):
                with LogContext(step_index=index):
                    try:
                        await step.run()
                    except Exception as e:
                        logger.exception("Step failed", kind=step.kind.value)
                        report.outcomes.append(
                            StepOutcome(index, step.kind, success=False, error=str(e))
                        )
                    else:
                        report.outcomes.append(StepOutcome(index, step.kind, success=True))
                tracker.update(details=step.kind.value)
                if self.settle_seconds > 0 and index < len(steps) - 1:
                    await asyncio.sleep(self.settle_seconds)
            tracker.complete()
            logger.info("Workflow run finished", failed_steps=report.failed_steps)
        return report

    def clear(self) -> SingleSheet:
        """Drop every step and start again with one blank single sheet."""
        for step in self._steps:
            step.remove_listener(self._on_step_changed)
            if isinstance(step, ThreeDStack):
                step.unbind_storage()
        self._steps = []
        logger.info("Workflow cleared", workflow_id=self.workflow_id)
        return self.create_initial_sheet()

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _storage_in_use(self) -> bool:
        return any(
            isinstance(step, ThreeDStack) and step.storage is self.storage
            for step in self._steps
        )
