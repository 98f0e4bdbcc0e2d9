"""Wire the stores and the executor together from settings."""

from __future__ import annotations

import logging

from devops_workflows.engine.config import EngineSettings
from devops_workflows.engine.stores import VariableStore, WorkflowRepository
from devops_workflows.engine.workflow.executor import WorkflowExecutor

logger = logging.getLogger(__name__)


class Engine:
    """The workflow engine components built once and shared by callers.

    Construction reads both stores from disk; a :class:`StoreError` here is
    fatal for the process.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        """Initialize the engine.

        Args:
            settings: Engine settings. If None, loads from environment.
        """
        self.settings = settings or EngineSettings()

        self.workflows = WorkflowRepository(self.settings.workflows_dir)
        self.variables = VariableStore(self.settings.variables_file)
        self.executor = WorkflowExecutor(
            self.workflows,
            self.variables,
            shell=self.settings.shell,
            working_dir=self.settings.working_dir,
        )

        logger.info(
            "Workflow engine initialized",
            extra={"data_dir": str(self.settings.data_dir)},
        )
