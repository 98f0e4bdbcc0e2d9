"""Unit tests for the workflow interpreter.

These run real `sh -c` commands, so every workflow here is short.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from devops_workflows.engine.errors import WorkflowNotFoundError
from devops_workflows.engine.models import (
    ExecutionStatus,
    GlobalVariable,
    Step,
    Variable,
    Workflow,
    WorkflowExecution,
)
from devops_workflows.engine.stores import VariableStore, WorkflowRepository
from devops_workflows.engine.workflow.execution import ExecutionRecord, LogStream
from devops_workflows.engine.workflow.executor import WorkflowExecutor

TIMEOUT = 15.0


def _cmd(step_id: str, content: str, **kwargs: object) -> Step:
    return Step.model_validate({"id": step_id, "name": step_id, "content": content, **kwargs})


def _ref(step_id: str, workflow_id: str) -> Step:
    return Step(id=step_id, name=step_id, type="workflow_ref", content=workflow_id)


def _action(kind: str, target: str = "") -> dict[str, str]:
    return {"type": kind, "target": target}


def _drain(stream: LogStream) -> list[str]:
    lines: list[str] = []
    while True:
        line = stream.get(timeout=TIMEOUT)
        if line is None:
            return lines
        lines.append(line)


def _run(
    executor: WorkflowExecutor,
    repository: WorkflowRepository,
    workflow: Workflow,
    inputs: dict[str, str] | None = None,
) -> tuple[WorkflowExecution, list[str]]:
    repository.save(workflow)
    record, stream = executor.execute(workflow.id, inputs)
    lines = _drain(stream)
    assert record.wait(TIMEOUT)
    return record.snapshot(), lines


def _executed(execution: WorkflowExecution) -> list[str]:
    """Step ids in the order their commands were started."""
    return [log.step_id for log in execution.logs if log.message.startswith("$ ")]


def test_all_steps_succeed(executor: WorkflowExecutor, repository: WorkflowRepository) -> None:
    wf = Workflow(id="wf", name="Two steps", steps=[_cmd("a", "echo one"), _cmd("b", "echo two")])

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.end_time is not None
    assert _executed(execution) == ["a", "b"]
    assert lines[0] == "Starting workflow: Two steps"
    assert "one" in lines and "two" in lines
    assert lines[-1] == "Workflow completed successfully"


def test_first_failing_step_fails_the_run(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(
        id="wf",
        steps=[_cmd("a", "echo a"), _cmd("b", "exit 3"), _cmd("c", "echo c")],
    )

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.FAILED
    assert execution.end_time is not None
    assert _executed(execution) == ["a", "b"]
    failures = [log for log in execution.logs if log.message.startswith("Step failed")]
    assert len(failures) == 1
    assert failures[0].step_id == "b"
    assert failures[0].level == "error"
    assert "exit status 3" in failures[0].message
    assert "c" not in lines


def test_on_failure_stop_ends_completed(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(
        id="wf",
        steps=[
            _cmd("A", "echo hi"),
            _cmd("B", "exit 1", on_failure=_action("stop")),
            _cmd("C", "echo never"),
        ],
    )

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    assert _executed(execution) == ["A", "B"]
    failed = [log.step_id for log in execution.logs if log.message.startswith("Step failed")]
    assert failed == ["B"]
    assert "never" not in lines


def test_on_failure_continue_keeps_going(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(
        id="wf",
        steps=[_cmd("a", "false", on_failure=_action("continue")), _cmd("b", "echo b")],
    )

    execution, _ = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    assert _executed(execution) == ["a", "b"]


def test_condition_jump_resumes_after_target(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(
        id="wf",
        steps=[
            _cmd(
                "s1",
                "echo start",
                conditions=[
                    {"type": "contains", "value": "start", "action": _action("jump_to", "s3")}
                ],
            ),
            _cmd("s2", "echo two"),
            _cmd("s3", "echo three"),
            _cmd("s4", "echo four"),
        ],
    )

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    assert _executed(execution) == ["s1", "s4"]
    assert "Jumping to step: s3" in lines
    assert "three" not in lines


def test_hook_jump_resumes_after_target(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    """Hook jumps land after their target, exactly like condition jumps."""
    wf = Workflow(
        id="wf",
        steps=[
            _cmd("s1", "true", on_success=_action("jump_to", "s2")),
            _cmd("s2", "echo two"),
            _cmd("s3", "echo three"),
        ],
    )

    execution, _ = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    assert _executed(execution) == ["s1", "s3"]


def test_backward_jump_repeats_steps_until_condition_changes(
    executor: WorkflowExecutor, repository: WorkflowRepository, tmp_path: Path
) -> None:
    counter = tmp_path / "count"
    wf = Workflow(
        id="wf",
        steps=[
            _cmd("init", f"echo x > {counter}"),
            _cmd("grow", f"echo x >> {counter}"),
            _cmd(
                "check",
                f"wc -l < {counter}",
                conditions=[
                    {"type": "equals", "value": "3", "action": _action("continue")},
                    {"type": "regex", "value": "[0-9]", "action": _action("jump_to", "init")},
                ],
            ),
        ],
    )

    execution, _ = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    # Jumping to "init" lands on "grow", so "init" runs once.
    assert _executed(execution) == ["init", "grow", "check", "grow", "check"]


def test_condition_stop_ends_completed_even_on_failure(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(
        id="wf",
        steps=[
            _cmd(
                "a",
                "echo boom; exit 2",
                conditions=[{"type": "exit_code", "value": "2", "action": _action("stop")}],
            ),
            _cmd("b", "echo never"),
        ],
    )

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    assert _executed(execution) == ["a"]
    assert "Condition matched: stop" in lines
    assert lines[-1] == "Workflow stopped by condition"
    assert not any(line.startswith("Step failed") for line in lines)


def test_on_success_stop_ends_completed(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(
        id="wf",
        steps=[_cmd("a", "true", on_success=_action("stop")), _cmd("b", "echo never")],
    )

    execution, _ = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    assert _executed(execution) == ["a"]


def test_execute_step_runs_target_inline(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(
        id="wf",
        steps=[
            _cmd(
                "s1",
                "echo main",
                conditions=[
                    {"type": "contains", "value": "main", "action": _action("execute_step", "s3")}
                ],
            ),
            _cmd("s2", "echo second"),
            _cmd("s3", "echo third"),
        ],
    )

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    assert _executed(execution) == ["s1", "s3", "s2", "s3"]
    assert lines.count("third") == 2


def test_condition_and_failure_hook_both_fire(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(
        id="wf",
        steps=[
            _cmd(
                "check",
                "exit 1",
                conditions=[
                    {
                        "type": "exit_code",
                        "value": "1",
                        "action": _action("execute_step", "cleanup"),
                    }
                ],
                on_failure=_action("continue"),
            ),
            _cmd("next", "echo next"),
            _cmd("cleanup", "echo cleanup"),
        ],
    )

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.COMPLETED
    assert _executed(execution) == ["check", "cleanup", "next", "cleanup"]
    # Condition action first, then the failure hook.
    assert lines.index("Executing step: cleanup") < lines.index("Step failed: exit status 1")


def test_unknown_step_type_fails(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(id="wf", steps=[Step(id="x", type="conditional", content="?")])

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.FAILED
    assert "Step failed: unknown step type: conditional" in lines


def test_missing_shell_fails_step(
    repository: WorkflowRepository, variable_store: VariableStore
) -> None:
    executor = WorkflowExecutor(repository, variable_store, shell="/nonexistent/shell-binary")
    wf = Workflow(id="wf", steps=[_cmd("a", "echo hi")])

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.FAILED
    assert any(line.startswith("Step failed: failed to start command") for line in lines)


def test_stderr_lines_are_logged_as_errors(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(id="wf", steps=[_cmd("a", "echo fine; echo oops 1>&2")])

    execution, _ = _run(executor, repository, wf)

    levels = {log.message: log.level for log in execution.logs if log.step_id == "a"}
    assert levels["fine"] == "info"
    assert levels["oops"] == "error"


def test_variable_precedence(
    executor: WorkflowExecutor,
    repository: WorkflowRepository,
    variable_store: VariableStore,
) -> None:
    variable_store.set(GlobalVariable(name="REGION", value="us-east-1"))
    variable_store.set(GlobalVariable(name="ENV", value="global-env"))
    wf = Workflow(
        id="wf",
        variables=[
            Variable(name="REGION", default_value="us-west-2"),
            Variable(name="ENV", default_value="default-env"),
            Variable(name="CLUSTER", default_value="main"),
            Variable(name="EMPTY", default_value=""),
        ],
        steps=[_cmd("a", "echo {REGION} {ENV} {CLUSTER}")],
    )

    execution, lines = _run(executor, repository, wf, {"ENV": "input-env"})

    assert execution.variables["REGION"] == "us-east-1"
    assert execution.variables["ENV"] == "input-env"
    assert execution.variables["CLUSTER"] == "main"
    assert "EMPTY" not in execution.variables
    assert "us-east-1 input-env main" in lines


def test_step_local_remap_only_affects_that_step(
    executor: WorkflowExecutor,
    repository: WorkflowRepository,
    variable_store: VariableStore,
) -> None:
    variable_store.set(GlobalVariable(name="AWS_REGION", value="eu-west-1"))
    wf = Workflow(
        id="wf",
        steps=[
            _cmd("a", "echo region={REGION}", variables={"REGION": "AWS_REGION"}),
            _cmd("b", "echo again={REGION}"),
        ],
    )

    execution, lines = _run(executor, repository, wf)

    assert "region=eu-west-1" in lines
    # Unresolved placeholders reach the shell untouched.
    assert "again={REGION}" in lines
    assert "REGION" not in execution.variables


def test_sub_workflow_logs_are_relayed_with_indent(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    repository.save(Workflow(id="child", name="Child", steps=[_cmd("greet", "echo {GREETING}")]))
    wf = Workflow(
        id="parent", name="Parent", steps=[_ref("call", "child"), _cmd("after", "echo done")]
    )

    execution, lines = _run(executor, repository, wf, {"GREETING": "hello"})

    assert execution.status is ExecutionStatus.COMPLETED
    assert "Executing sub-workflow: child" in lines
    assert "  Starting workflow: Child" in lines
    assert "  hello" in lines
    assert "  Workflow completed successfully" in lines
    assert lines.index("  hello") < lines.index("done")
    relayed = [log for log in execution.logs if log.message == "  hello"]
    assert relayed[0].step_id == "call"


def test_failed_sub_workflow_fails_parent(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    repository.save(Workflow(id="child", steps=[_cmd("bad", "exit 7")]))
    wf = Workflow(id="parent", steps=[_ref("call", "child"), _cmd("after", "echo never")])

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.FAILED
    assert "Step failed: sub-workflow child ended failed" in lines
    assert "never" not in lines


def test_missing_sub_workflow_fails_parent(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(id="parent", steps=[_ref("call", "nope")])

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.FAILED
    assert "Step failed: workflow not found: nope" in lines


def test_self_reference_is_a_cycle(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    wf = Workflow(id="loop", steps=[_ref("again", "loop")])

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.FAILED
    assert "Step failed: sub-workflow cycle detected: loop -> loop" in lines


def test_indirect_cycle_is_detected(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    repository.save(Workflow(id="b", steps=[_ref("to-a", "a")]))
    wf = Workflow(id="a", steps=[_ref("to-b", "b")])

    execution, lines = _run(executor, repository, wf)

    assert execution.status is ExecutionStatus.FAILED
    assert "  Step failed: sub-workflow cycle detected: a -> b -> a" in lines
    assert "Step failed: sub-workflow b ended failed" in lines


def test_unknown_workflow_raises(executor: WorkflowExecutor) -> None:
    with pytest.raises(WorkflowNotFoundError):
        executor.execute("missing")


def test_cancel_before_first_step(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    repository.save(Workflow(id="wf", steps=[_cmd("a", "echo never")]))
    cancel = threading.Event()
    cancel.set()

    record, stream = executor.execute("wf", cancel_event=cancel)
    lines = _drain(stream)

    assert record.wait(TIMEOUT)
    assert record.status is ExecutionStatus.CANCELLED
    assert "never" not in lines
    assert lines[-1] == "Execution cancelled"


def test_cancel_kills_long_running_step(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    repository.save(
        Workflow(id="wf", steps=[_cmd("wait", "sleep 30"), _cmd("after", "echo after")])
    )
    started = time.monotonic()

    record, stream = executor.execute("wf")
    seen: list[str] = []
    while "$ sleep 30" not in seen:
        line = stream.get(timeout=TIMEOUT)
        assert line is not None
        seen.append(line)
    record.cancel()
    seen.extend(_drain(stream))

    assert record.wait(TIMEOUT)
    assert record.status is ExecutionStatus.CANCELLED
    assert record.snapshot().end_time is not None
    assert "after" not in seen
    assert seen[-1] == "Execution cancelled"
    assert stream.closed
    assert time.monotonic() - started < 10


def _cancel_after(record: ExecutionRecord, stream: LogStream, marker: str) -> list[str]:
    seen: list[str] = []
    while marker not in seen:
        line = stream.get(timeout=TIMEOUT)
        assert line is not None
        seen.append(line)
    record.cancel()
    seen.extend(_drain(stream))
    assert record.wait(TIMEOUT)
    return seen


def test_cancel_during_execute_step_side_run(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    repository.save(
        Workflow(
            id="wf",
            steps=[
                _cmd(
                    "a",
                    "echo go",
                    conditions=[
                        {
                            "type": "contains",
                            "value": "go",
                            "action": _action("execute_step", "side"),
                        }
                    ],
                    on_success=_action("stop"),
                ),
                _cmd("side", "sleep 30"),
            ],
        )
    )
    started = time.monotonic()

    record, stream = executor.execute("wf")
    lines = _cancel_after(record, stream, "$ sleep 30")

    assert record.status is ExecutionStatus.CANCELLED
    assert lines[-1] == "Execution cancelled"
    assert "Workflow stopped by on_success" not in lines
    assert not any(line.startswith("Step failed") for line in lines)
    assert time.monotonic() - started < 10


def test_cancel_during_hook_side_run(
    executor: WorkflowExecutor, repository: WorkflowRepository
) -> None:
    repository.save(
        Workflow(
            id="wf",
            steps=[
                _cmd("a", "true", on_success=_action("execute_step", "side")),
                _cmd("b", "echo never"),
                _cmd("side", "sleep 30"),
            ],
        )
    )

    record, stream = executor.execute("wf")
    lines = _cancel_after(record, stream, "$ sleep 30")

    assert record.status is ExecutionStatus.CANCELLED
    assert "never" not in lines
    assert lines[-1] == "Execution cancelled"


def test_stream_is_closed_once(executor: WorkflowExecutor, repository: WorkflowRepository) -> None:
    repository.save(Workflow(id="wf", steps=[_cmd("a", "true")]))

    record, stream = executor.execute("wf")
    _drain(stream)
    assert record.wait(TIMEOUT)

    assert stream.closed
    assert stream.close() is False
    # Iterating a closed stream ends immediately.
    assert list(stream) == []


def test_missing_variables_preflight(
    executor: WorkflowExecutor,
    repository: WorkflowRepository,
    variable_store: VariableStore,
) -> None:
    variable_store.set(GlobalVariable(name="AWS_REGION", value="eu-west-1"))
    repository.save(
        Workflow(
            id="wf",
            variables=[Variable(name="ENV", default_value="dev")],
            steps=[
                _cmd("a", "deploy {ENV} {REGION}", variables={"REGION": "AWS_REGION"}),
                _cmd("b", "notify {CHANNEL} {ENV} {TOKEN}"),
                _ref("c", "other"),
            ],
        )
    )

    assert executor.missing_variables("wf") == {"b": ["CHANNEL", "TOKEN"]}
    assert executor.missing_variables("wf", {"CHANNEL": "#ops", "TOKEN": "t"}) == {}


def test_record_finish_is_terminal_once() -> None:
    record = ExecutionRecord(execution_id="e1", workflow_id="wf", variables={})

    assert record.finish(ExecutionStatus.FAILED) is True
    assert record.finish(ExecutionStatus.COMPLETED) is False
    assert record.status is ExecutionStatus.FAILED
    with pytest.raises(ValueError):
        record.finish(ExecutionStatus.RUNNING)
