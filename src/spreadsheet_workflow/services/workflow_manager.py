"""In-memory registry of live workflows used by the API.

Workflows live for the lifetime of the process. Access is guarded by a
re-entrant lock so request handlers running in the threadpool and the event
loop can share one registry.
"""

import threading
from collections.abc import Callable

from spreadsheet_workflow.services.collaborators import Collaborators, LocalCollaborators
from spreadsheet_workflow.storage.spreadsheet_storage import SpreadsheetStorage
from spreadsheet_workflow.utils.exceptions import WorkflowNotFoundError
from spreadsheet_workflow.utils.logging import get_logger
from spreadsheet_workflow.workflow.orchestrator import Workflow

logger = get_logger(__name__)

StorageFactory = Callable[[str], SpreadsheetStorage]


class WorkflowManager:
    """Thread-safe registry of workflows keyed by workflow ID.

    Args:
        collaborators: Client handed to every workflow. Defaults to the
            in-process services.
        storage_factory: Optional callable building a storage for a new
            workflow from its ID.
    """

    def __init__(
        self,
        collaborators: Collaborators | None = None,
        storage_factory: StorageFactory | None = None,
    ) -> None:
        self.collaborators = collaborators or LocalCollaborators()
        self.storage_factory = storage_factory
        self._workflows: dict[str, Workflow] = {}
        self._lock = threading.RLock()

    def create_workflow(self, create_initial_sheet: bool = True) -> Workflow:
        """Register a new workflow, optionally with its first blank sheet."""
        workflow = Workflow(self.collaborators)
        if self.storage_factory is not None:
            workflow.storage = self.storage_factory(workflow.workflow_id)
        if create_initial_sheet:
            workflow.create_initial_sheet()

        with self._lock:
            self._workflows[workflow.workflow_id] = workflow

        logger.info("Workflow created", workflow_id=workflow.workflow_id)
        return workflow

    def get_workflow(self, workflow_id: str) -> Workflow:
        """Get a workflow by ID.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID.
        """
        with self._lock:
            workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def workflow_exists(self, workflow_id: str) -> bool:
        with self._lock:
            return workflow_id in self._workflows

    def delete_workflow(self, workflow_id: str) -> None:
        """Remove a workflow.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID.
        """
        with self._lock:
            if self._workflows.pop(workflow_id, None) is None:
                raise WorkflowNotFoundError(workflow_id)
        logger.info("Workflow deleted", workflow_id=workflow_id)

    def list_workflows(self) -> list[Workflow]:
        with self._lock:
            return list(self._workflows.values())

    def get_workflow_count(self) -> int:
        with self._lock:
            return len(self._workflows)

    def clear_all(self) -> None:
        """Remove every workflow. Used primarily for testing."""
        with self._lock:
            self._workflows.clear()
        logger.info("All workflows cleared")


# Global workflow manager instance
_workflow_manager: WorkflowManager | None = None


def get_workflow_manager() -> WorkflowManager:
    """Get the global workflow manager, creating it on first call."""
    global _workflow_manager
    if _workflow_manager is None:
        _workflow_manager = WorkflowManager()
    return _workflow_manager


def reset_workflow_manager() -> None:
    """Reset the global workflow manager. Used primarily for testing."""
    global _workflow_manager
    _workflow_manager = None
