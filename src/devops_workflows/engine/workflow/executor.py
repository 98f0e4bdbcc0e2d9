"""The workflow interpreter.

A run is a cursor over ``workflow.steps``. Each iteration:

1. stops as ``cancelled`` if the cancellation event is set
2. runs the step (shell command or nested workflow)
3. applies the action of the first matching condition
4. applies ``on_failure`` / ``on_success``, independently of step 3
5. advances the cursor by one

Because step 5 always runs, a ``jump_to`` resumes at the step *after* its
target. Both action passes may fire in the same iteration, conditions first.
Cancellation is checked again after each action, since an ``execute_step``
side-run can be the step that gets killed.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from devops_workflows.engine.errors import (
    CancellationError,
    CycleError,
    DefinitionError,
    ProcessError,
    StepTypeError,
    SubWorkflowError,
    WorkflowEngineError,
)
from devops_workflows.engine.models import (
    ACTION_CONTINUE,
    ACTION_EXECUTE_STEP,
    ACTION_JUMP_TO,
    ACTION_STOP,
    STEP_COMMAND,
    STEP_WORKFLOW_REF,
    ExecutionStatus,
    LogLevel,
    Step,
    StepAction,
    Workflow,
)
from devops_workflows.engine.templates import missing_variables, substitute
from devops_workflows.engine.workflow.conditions import evaluate_conditions
from devops_workflows.engine.workflow.execution import ExecutionRecord, LogStream
from devops_workflows.engine.workflow.shell import run_shell_command

logger = logging.getLogger(__name__)

SUB_WORKFLOW_INDENT = "  "


class WorkflowSource(Protocol):
    def get(self, workflow_id: str) -> Workflow: ...


class VariableSource(Protocol):
    def get_all(self) -> dict[str, str]: ...


@dataclass(frozen=True, slots=True)
class StepOutcome:
    output: str = ""
    exit_code: int = 0
    error: WorkflowEngineError | None = None


def bind_step_variables(step: Step, scope: Mapping[str, str]) -> dict[str, str]:
    """Return ``scope`` plus the step's local placeholder remapping."""

    bound = dict(scope)
    for local_name, variable_name in step.variables.items():
        if variable_name in scope:
            bound[local_name] = scope[variable_name]
    return bound


class WorkflowExecutor:
    """Runs workflows loaded from a repository on background threads."""

    def __init__(
        self,
        workflows: WorkflowSource,
        variables: VariableSource,
        *,
        shell: str = "sh",
        working_dir: Path | None = None,
    ) -> None:
        self._workflows = workflows
        self._variables = variables
        self.shell = shell
        self.working_dir = working_dir

    def resolve_variables(self, workflow: Workflow, inputs: Mapping[str, str]) -> dict[str, str]:
        """Merge globals, then workflow defaults for unset names, then inputs."""

        merged = dict(self._variables.get_all())
        for variable in workflow.variables:
            if variable.name not in merged and variable.default_value != "":
                merged[variable.name] = variable.default_value
        merged.update(inputs)
        return merged

    def missing_variables(
        self, workflow_id: str, inputs: Mapping[str, str] | None = None
    ) -> dict[str, list[str]]:
        """Pre-flight check: unresolved placeholders per command step.

        ``execute`` does not call this; unresolved placeholders are passed to
        the shell as written.
        """

        workflow = self._workflows.get(workflow_id)
        scope = self.resolve_variables(workflow, inputs or {})
        missing: dict[str, list[str]] = {}
        for step in workflow.steps:
            if step.type != STEP_COMMAND:
                continue
            names = missing_variables(step.content, bind_step_variables(step, scope))
            if names:
                missing[step.id] = names
        return missing

    def execute(
        self,
        workflow_id: str,
        inputs: Mapping[str, str] | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> tuple[ExecutionRecord, LogStream]:
        """Start a run and return immediately.

        Raises :class:`WorkflowNotFoundError` if the workflow does not exist.
        Every other problem ends up in the returned record. The log stream is
        closed once the run is over.
        """

        return self._start(
            workflow_id,
            dict(inputs or {}),
            cancel_event or threading.Event(),
            ancestry=(),
        )

    def _start(
        self,
        workflow_id: str,
        inputs: dict[str, str],
        cancel_event: threading.Event,
        *,
        ancestry: tuple[str, ...],
    ) -> tuple[ExecutionRecord, LogStream]:
        if workflow_id in ancestry:
            raise CycleError(workflow_id=workflow_id, chain=ancestry)
        workflow = self._workflows.get(workflow_id)

        record = ExecutionRecord(
            execution_id=str(uuid.uuid4()),
            workflow_id=workflow.id,
            variables=self.resolve_variables(workflow, inputs),
            cancel_event=cancel_event,
        )
        stream = LogStream()
        run = _Run(
            executor=self,
            workflow=workflow,
            record=record,
            stream=stream,
            ancestry=(*ancestry, workflow.id),
        )

        logger.info(
            "Starting workflow execution",
            extra={"execution_id": record.id, "workflow_id": workflow.id, "depth": len(ancestry)},
        )
        thread = threading.Thread(
            target=run.run,
            name=f"workflow-{workflow.id}-{record.id[:8]}",
            daemon=True,
        )
        thread.start()
        return record, stream


class _Run:
    """Interpreter state for one execution; touched only by its own thread."""

    def __init__(
        self,
        *,
        executor: WorkflowExecutor,
        workflow: Workflow,
        record: ExecutionRecord,
        stream: LogStream,
        ancestry: tuple[str, ...],
    ) -> None:
        self._executor = executor
        self._workflow = workflow
        self._steps = workflow.steps
        self._index = workflow.step_index()
        self._record = record
        self._stream = stream
        self._ancestry = ancestry

    def run(self) -> None:
        try:
            self._loop()
        except Exception as e:
            logger.exception("Workflow execution crashed", extra=self._extra(""))
            self._finish(ExecutionStatus.FAILED, "", f"Execution failed: {e}", level="error")
        finally:
            self._stream.close()
            self._record.mark_done()

    def _loop(self) -> None:
        self._log("", f"Starting workflow: {self._workflow.name or self._workflow.id}")

        total = len(self._steps)
        cursor = 0
        while cursor < total:
            step = self._steps[cursor]

            if self._stop_if_cancelled(step.id):
                return

            self._log(step.id, f"Step {cursor + 1}/{total}: {step.display_name}")
            outcome = self._run_step(step)

            if self._stop_if_cancelled(step.id, outcome.error):
                return

            if step.conditions:
                action = evaluate_conditions(step.conditions, outcome.output, outcome.exit_code)
                if action is not None:
                    self._log(step.id, f"Condition matched: {action.type}")
                    cursor, stop = self._apply_action(action, step, cursor)
                    if self._stop_if_cancelled(step.id):
                        return
                    if stop:
                        self._finish(ExecutionStatus.COMPLETED, "", "Workflow stopped by condition")
                        return

            if outcome.error is not None:
                self._log(step.id, f"Step failed: {outcome.error}", level="error")
                if step.on_failure is None:
                    self._finish(
                        ExecutionStatus.FAILED,
                        "",
                        f"Workflow failed at step: {step.display_name}",
                        level="error",
                    )
                    return
                cursor, stop = self._apply_action(step.on_failure, step, cursor)
                if self._stop_if_cancelled(step.id):
                    return
                if stop:
                    self._finish(ExecutionStatus.COMPLETED, "", "Workflow stopped by on_failure")
                    return
            elif step.on_success is not None:
                cursor, stop = self._apply_action(step.on_success, step, cursor)
                if self._stop_if_cancelled(step.id):
                    return
                if stop:
                    self._finish(ExecutionStatus.COMPLETED, "", "Workflow stopped by on_success")
                    return

            cursor += 1

        self._finish(ExecutionStatus.COMPLETED, "", "Workflow completed successfully")

    def _apply_action(self, action: StepAction, step: Step, cursor: int) -> tuple[int, bool]:
        """Apply an action; returns the new cursor and whether the run should stop."""

        kind = action.type
        if kind == ACTION_STOP:
            return cursor, True

        if kind == ACTION_JUMP_TO:
            target = self._index.get(action.target)
            if target is None:
                self._log(step.id, f"Jump target not found: {action.target}", level="error")
                return cursor, False
            self._log(step.id, f"Jumping to step: {self._steps[target].display_name}")
            return target, False

        if kind == ACTION_EXECUTE_STEP:
            target = self._index.get(action.target)
            if target is None:
                self._log(step.id, f"Step to execute not found: {action.target}", level="error")
                return cursor, False
            side_step = self._steps[target]
            self._log(step.id, f"Executing step: {side_step.display_name}")
            side = self._run_step(side_step)
            if side.error is not None and not isinstance(side.error, CancellationError):
                self._log(side_step.id, f"Step failed: {side.error}", level="error")
            return cursor, False

        if kind != ACTION_CONTINUE:
            self._log(step.id, f"Unknown action type: {kind}", level="error")
        return cursor, False

    def _run_step(self, step: Step) -> StepOutcome:
        if step.type == STEP_COMMAND:
            return self._run_command(step)
        if step.type == STEP_WORKFLOW_REF:
            return self._run_sub_workflow(step)
        return StepOutcome(exit_code=-1, error=StepTypeError(step.type))

    def _run_command(self, step: Step) -> StepOutcome:
        command = substitute(step.content, bind_step_variables(step, self._record.variables))
        self._log(step.id, f"$ {command}")

        try:
            process = run_shell_command(
                command,
                cwd=self._executor.working_dir,
                cancel_event=self._record.cancel_event,
                shell=self._executor.shell,
            )
        except OSError as e:
            reason = f"failed to start command: {e}"
            return StepOutcome(exit_code=-1, error=ProcessError(exit_code=-1, reason=reason))

        lines: list[str] = []
        for line in process:
            lines.append(line.text + "\n")
            level: LogLevel = "info" if line.source == "stdout" else "error"
            self._log(step.id, line.text, level=level, output=True)

        exit_code = process.wait()
        output = "".join(lines)
        if process.killed:
            return StepOutcome(output=output, exit_code=exit_code, error=CancellationError())
        if exit_code != 0:
            return StepOutcome(
                output=output,
                exit_code=exit_code,
                error=ProcessError(exit_code=exit_code, output=output),
            )
        return StepOutcome(output=output, exit_code=exit_code)

    def _run_sub_workflow(self, step: Step) -> StepOutcome:
        workflow_id = step.content.strip()
        self._log(step.id, f"Executing sub-workflow: {workflow_id}")

        try:
            child, child_stream = self._executor._start(
                workflow_id,
                self._record.variables,
                self._record.cancel_event,
                ancestry=self._ancestry,
            )
        except DefinitionError as e:
            return StepOutcome(exit_code=1, error=e)

        for line in child_stream:
            self._log(step.id, SUB_WORKFLOW_INDENT + line)
        child.wait()

        status = child.status
        if status is ExecutionStatus.COMPLETED:
            return StepOutcome()
        if status is ExecutionStatus.CANCELLED:
            return StepOutcome(exit_code=1, error=CancellationError())
        return StepOutcome(
            exit_code=1,
            error=SubWorkflowError(workflow_id=workflow_id, status=status.value),
        )

    def _cancelled(self) -> bool:
        return self._record.cancel_event.is_set()

    def _stop_if_cancelled(
        self, step_id: str, error: WorkflowEngineError | None = None
    ) -> bool:
        """Finish as cancelled if cancellation was requested."""

        if not (self._cancelled() or isinstance(error, CancellationError)):
            return False
        self._finish(ExecutionStatus.CANCELLED, step_id, "Execution cancelled")
        return True

    def _finish(
        self, status: ExecutionStatus, step_id: str, message: str, *, level: LogLevel = "info"
    ) -> None:
        self._log(step_id, message, level=level)
        if self._record.finish(status):
            logger.info(
                "Workflow execution finished",
                extra={**self._extra(step_id), "status": status.value},
            )

    def _log(
        self, step_id: str, message: str, *, level: LogLevel = "info", output: bool = False
    ) -> None:
        self._record.append_log(step_id=step_id, level=level, message=message)
        self._stream.put(message)
        if output:
            logger.debug(message, extra=self._extra(step_id))
        elif level == "error":
            logger.warning(message, extra=self._extra(step_id))
        else:
            logger.info(message, extra=self._extra(step_id))

    def _extra(self, step_id: str) -> dict[str, object]:
        return {
            "execution_id": self._record.id,
            "workflow_id": self._workflow.id,
            "step_id": step_id,
        }
