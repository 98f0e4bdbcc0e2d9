"""Pydantic models for workflow definitions, executions and global variables.

JSON keys are snake_case and match the on-disk layout of the workflow and
variable stores.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

STEP_COMMAND = "command"
STEP_WORKFLOW_REF = "workflow_ref"

ACTION_CONTINUE = "continue"
ACTION_STOP = "stop"
ACTION_JUMP_TO = "jump_to"
ACTION_EXECUTE_STEP = "execute_step"

LogLevel = Literal["info", "error"]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Variable(BaseModel):
    """A variable declared by a workflow."""

    name: str
    description: str = ""
    type: str = Field(default="string", description="string | number | select | boolean")
    default_value: str = ""
    options: list[str] = Field(default_factory=list, description="Choices for select variables")
    is_global: bool = False
    required: bool = False

    @field_validator("options", mode="before")
    @classmethod
    def _null_options(cls, value: Any) -> Any:
        return [] if value is None else value


class StepAction(BaseModel):
    type: str = Field(
        default=ACTION_CONTINUE,
        description="continue | stop | jump_to | execute_step",
    )
    target: str = Field(default="", description="Step id for jump_to / execute_step")


class Condition(BaseModel):
    type: str = Field(
        description="contains | equals | starts_with | ends_with | regex | exit_code",
    )
    value: str = ""
    # Carried for compatibility; conditions are always evaluated first-match.
    operator: str = ""
    action: StepAction = Field(default_factory=StepAction)


class Step(BaseModel):
    id: str
    name: str = ""
    type: str = Field(default=STEP_COMMAND, description="command | workflow_ref")
    # Execution order is the position in Workflow.steps, not this field.
    order: int = 0
    content: str = Field(default="", description="Command template or referenced workflow id")
    variables: dict[str, str] = Field(
        default_factory=dict,
        description="Local placeholder -> variable name remapping",
    )
    conditions: list[Condition] = Field(default_factory=list)
    on_success: StepAction | None = None
    on_failure: StepAction | None = None

    # Files written by older tooling may carry null for empty collections.
    @field_validator("variables", mode="before")
    @classmethod
    def _null_variables(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("conditions", mode="before")
    @classmethod
    def _null_conditions(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def display_name(self) -> str:
        return self.name or self.id


class Workflow(BaseModel):
    id: str = ""
    name: str = ""
    description: str = ""
    category: str = ""
    variables: list[Variable] = Field(default_factory=list)
    steps: list[Step] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("id")
    @classmethod
    def _id_is_file_safe(cls, value: str) -> str:
        value = value.strip()
        if any(sep in value for sep in ("/", "\\")) or value in {".", ".."}:
            raise ValueError(f"workflow id cannot be used as a file name: {value!r}")
        return value

    @field_validator("variables", "steps", mode="before")
    @classmethod
    def _null_lists(cls, value: Any) -> Any:
        return [] if value is None else value

    @model_validator(mode="after")
    def _unique_step_ids(self) -> Workflow:
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id: {step.id!r}")
            seen.add(step.id)
        return self

    def step_index(self) -> dict[str, int]:
        """Map each step id to its position in ``steps``."""

        return {step.id: idx for idx, step in enumerate(self.steps)}


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class ExecutionLog(BaseModel):
    timestamp: datetime = Field(default_factory=utc_now)
    step_id: str = ""
    level: LogLevel = "info"
    message: str


class WorkflowExecution(BaseModel):
    """Point-in-time snapshot of one workflow run."""

    id: str
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    variables: dict[str, str] = Field(default_factory=dict)
    logs: list[ExecutionLog] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None


class GlobalVariable(BaseModel):
    """A reusable named value shared by every workflow."""

    name: str
    value: str = ""
    description: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("variable name must not be empty")
        return value
