"""Runnable step interface shared by every sheet view.

The orchestrator only talks to steps through this interface: it reads their
headers and rows to derive the next step, swaps their data during
propagation and runs them in order.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

from spreadsheet_workflow.sheets.grid import Cell
from spreadsheet_workflow.utils.exceptions import UnsupportedStepOperationError
from spreadsheet_workflow.utils.logging import get_logger

logger = get_logger(__name__)


class StepKind(str, Enum):
    """Kind of view held by a workflow step."""

    SINGLE = "single"
    THREE_D = "three_d"
    AGGREGATION = "aggregation"
    LLM_PIPE = "llm_pipe"


StepListener = Callable[["RunnableStep"], None]


class RunnableStep(ABC):
    """Base class for every workflow step view.

    Subclasses implement the operations that make sense for their kind;
    the rest raise UnsupportedStepOperationError.
    """

    kind: StepKind

    def __init__(self, step_id: str | None = None) -> None:
        self.step_id = step_id or str(uuid.uuid4())
        self._listeners: list[StepListener] = []
        self._running: set[str] = set()

    def add_listener(self, listener: StepListener) -> None:
        """Register a callback invoked after the step's data changes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StepListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[bool]:
        """Yield False when ``operation`` is already running on this step."""
        if operation in self._running:
            logger.info(
                "Skipping overlapping run", step_id=self.step_id, operation=operation
            )
            yield False
            return
        self._running.add(operation)
        try:
            yield True
        finally:
            self._running.discard(operation)

    @abstractmethod
    def get_headers(self) -> list[str]:
        """Header list downstream steps label this step's rows with."""

    @abstractmethod
    def source_rows(self) -> tuple[list[str], list[list[Cell]]]:
        """Headers and rows a following step derives its data from."""

    @abstractmethod
    def snapshot(self) -> Any:
        """Copy of the step's data, safe to hand to another step."""

    @abstractmethod
    def replace_data(self, data: Any, notify: bool = True) -> None:
        """Swap in new data, optionally without notifying listeners."""

    @abstractmethod
    async def run(self) -> None:
        """Run every remote operation this kind supports, in order."""

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Serializable view of the step."""

    async def run_find(self) -> bool:
        raise UnsupportedStepOperationError(self.kind.value, "run_find")

    async def run_cells(self) -> int:
        raise UnsupportedStepOperationError(self.kind.value, "run_cells")

    async def run_aggregation(self) -> int:
        raise UnsupportedStepOperationError(self.kind.value, "run_aggregation")

    async def run_llm(self) -> int:
        raise UnsupportedStepOperationError(self.kind.value, "run_llm")
