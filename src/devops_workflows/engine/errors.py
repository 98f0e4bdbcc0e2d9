"""Error taxonomy for the workflow engine.

Step-level errors (:class:`StepError` and its subclasses, :class:`DefinitionError`
raised for a sub-workflow) are recovered by the executor and turned into a
terminal execution status plus log entries. Only :class:`StoreError` at startup
and :class:`WorkflowNotFoundError` from a top-level ``execute`` reach callers.
"""

from __future__ import annotations

from dataclasses import dataclass


class WorkflowEngineError(Exception):
    """Base class for every error raised by the engine."""


class NotFoundError(WorkflowEngineError):
    """A record addressed by id or name does not exist."""


class DefinitionError(WorkflowEngineError):
    """A workflow definition cannot be executed as written."""


@dataclass(eq=False)
class WorkflowNotFoundError(NotFoundError, DefinitionError):
    workflow_id: str

    def __str__(self) -> str:
        return f"workflow not found: {self.workflow_id}"


@dataclass(eq=False)
class VariableNotFoundError(NotFoundError):
    name: str

    def __str__(self) -> str:
        return f"variable not found: {self.name}"


@dataclass(eq=False)
class CycleError(DefinitionError):
    """A sub-workflow reference points back at one of its callers."""

    workflow_id: str
    chain: tuple[str, ...]

    def __str__(self) -> str:
        path = " -> ".join((*self.chain, self.workflow_id))
        return f"sub-workflow cycle detected: {path}"


class StepError(WorkflowEngineError):
    """A single step did not succeed."""


@dataclass(eq=False)
class StepTypeError(StepError):
    step_type: str

    def __str__(self) -> str:
        return f"unknown step type: {self.step_type}"


@dataclass(eq=False)
class ProcessError(StepError):
    """The shell command could not start (exit code -1) or exited non-zero."""

    exit_code: int
    output: str = ""
    reason: str = ""

    def __str__(self) -> str:
        if self.reason:
            return self.reason
        return f"exit status {self.exit_code}"


@dataclass(eq=False)
class SubWorkflowError(StepError):
    workflow_id: str
    status: str

    def __str__(self) -> str:
        return f"sub-workflow {self.workflow_id} ended {self.status}"


class CancellationError(WorkflowEngineError):
    """An operator asked for the execution to stop."""

    def __str__(self) -> str:
        return "execution cancelled"


class StoreError(WorkflowEngineError):
    """Durable workflow or variable storage could not be read or written."""
