#!/usr/bin/env python3
"""Programmatic workflow execution example.

This demonstrates using the engine components directly:

* load settings from `.env`
* store a small two-step workflow with a condition
* run it and stream its log lines as they are produced

The data directory comes from `WORKFLOW_DATA_DIR` (default: `./data`).
"""

from __future__ import annotations

import argparse
from typing import Sequence

from devops_workflows.engine.config import EngineSettings
from devops_workflows.engine.logging import configure_logging
from devops_workflows.engine.models import Condition, Step, StepAction, Variable, Workflow
from devops_workflows.engine.runtime import Engine


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a demo workflow (programmatic example).")
    parser.add_argument("--target", default="localhost", help="Host to check (TARGET variable)")
    return parser.parse_args(argv)


def _demo_workflow() -> Workflow:
    return Workflow(
        id="demo-health-check",
        name="Demo health check",
        category="examples",
        variables=[Variable(name="TARGET", default_value="localhost")],
        steps=[
            Step(
                id="probe",
                name="Probe target",
                content="echo checking {TARGET}; echo status=ok",
                conditions=[
                    Condition(
                        type="contains",
                        value="status=degraded",
                        action=StepAction(type="execute_step", target="alert"),
                    )
                ],
            ),
            Step(id="report", name="Report", content="echo {TARGET} is healthy"),
            Step(
                id="alert",
                name="Alert",
                content="echo {TARGET} needs attention",
                on_success=StepAction(type="stop"),
            ),
        ],
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings()
    configure_logging(settings.log_level, settings.log_format)

    engine = Engine(settings)
    workflow = engine.workflows.save(_demo_workflow())

    record, stream = engine.executor.execute(workflow.id, {"TARGET": args.target})
    for line in stream:
        print(line)
    record.wait()

    print(f"Execution {record.id} ended {record.status.value}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
