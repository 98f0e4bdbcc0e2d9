"""Test configuration and fixtures."""

from pathlib import Path

import pytest

from devops_workflows.engine.stores import VariableStore, WorkflowRepository
from devops_workflows.engine.workflow.executor import WorkflowExecutor


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Provide a temporary data directory."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def repository(data_dir: Path) -> WorkflowRepository:
    """Provide an empty workflow repository."""
    return WorkflowRepository(data_dir / "workflows")


@pytest.fixture
def variable_store(data_dir: Path) -> VariableStore:
    """Provide an empty global variable store."""
    return VariableStore(data_dir / "global_variables.json")


@pytest.fixture
def executor(repository: WorkflowRepository, variable_store: VariableStore) -> WorkflowExecutor:
    """Provide an executor wired to the temporary stores."""
    return WorkflowExecutor(repository, variable_store)
