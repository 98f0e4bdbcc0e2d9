"""CLI entrypoint for the workflow engine."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from devops_workflows import __version__
from devops_workflows.engine.config import EngineSettings
from devops_workflows.engine.errors import NotFoundError, StoreError
from devops_workflows.engine.logging import configure_logging
from devops_workflows.engine.models import ExecutionStatus, GlobalVariable, Workflow
from devops_workflows.engine.runtime import Engine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_NOT_FOUND = 3
EXIT_FAILED = 4
EXIT_MISSING_VARIABLES = 5
EXIT_CANCELLED = 130


def _parse_assignments(values: list[str] | None) -> dict[str, str]:
    """Parse repeated ``NAME=VALUE`` arguments."""

    parsed: dict[str, str] = {}
    for item in values or []:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Expected NAME=VALUE, got {item!r}")
        parsed[name.strip()] = value
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devops-workflows",
        description="Run and manage shell command workflows",
    )
    parser.add_argument(
        "--version", action="version", version=f"devops-workflows {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-workflows", help="List stored workflows")

    show = subparsers.add_parser("show-workflow", help="Print a workflow as JSON")
    show.add_argument("workflow_id", help="Workflow id")

    import_wf = subparsers.add_parser(
        "import-workflow",
        help="Create or replace a workflow from a JSON file",
    )
    import_wf.add_argument("path", type=Path, help="Path to the workflow JSON file")

    delete_wf = subparsers.add_parser("delete-workflow", help="Delete a workflow")
    delete_wf.add_argument("workflow_id", help="Workflow id")

    subparsers.add_parser("list-vars", help="List global variables")

    set_var = subparsers.add_parser("set-var", help="Create or update a global variable")
    set_var.add_argument("name", help="Variable name, e.g. AWS_REGION")
    set_var.add_argument("value", help="Variable value")
    set_var.add_argument("--description", default="", help="Optional description")

    delete_var = subparsers.add_parser("delete-var", help="Delete a global variable")
    delete_var.add_argument("name", help="Variable name")

    for name, help_text in (
        ("validate", "Report placeholders that would stay unresolved"),
        ("run", "Run a workflow and stream its output"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("workflow_id", help="Workflow id")
        sub.add_argument(
            "--var",
            dest="variables",
            action="append",
            metavar="NAME=VALUE",
            help="Input variable (repeatable); inputs override globals and defaults",
        )

    return parser


def _run_workflow(engine: Engine, workflow_id: str, inputs: dict[str, str]) -> int:
    record, stream = engine.executor.execute(workflow_id, inputs)
    try:
        for line in stream:
            print(line, flush=True)
    except KeyboardInterrupt:
        print("Cancelling...", file=sys.stderr)
        record.cancel()
        for line in stream:
            print(line, flush=True)

    record.wait()
    status = record.status
    logger.info(
        "Execution ended",
        extra={"execution_id": record.id, "workflow_id": workflow_id, "status": status.value},
    )
    if status is ExecutionStatus.COMPLETED:
        return EXIT_OK
    if status is ExecutionStatus.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_USAGE

    configure_logging(settings.log_level, settings.log_format)

    try:
        engine = Engine(settings)
    except StoreError as e:
        logger.error("Cannot open workflow storage", extra={"error": str(e)})
        print(str(e), file=sys.stderr)
        return EXIT_ERROR

    try:
        if args.command == "list-workflows":
            for wf in engine.workflows.list():
                category = f" [{wf.category}]" if wf.category else ""
                print(f"{wf.id}\t{wf.name}{category}\t{len(wf.steps)} steps")
            return EXIT_OK

        if args.command == "show-workflow":
            workflow = engine.workflows.get(args.workflow_id)
            print(json.dumps(workflow.model_dump(mode="json"), indent=2, ensure_ascii=False))
            return EXIT_OK

        if args.command == "import-workflow":
            raw = args.path.read_text(encoding="utf-8")
            saved = engine.workflows.save(Workflow.model_validate_json(raw))
            print(f"Saved workflow {saved.id} ({saved.name})")
            return EXIT_OK

        if args.command == "delete-workflow":
            engine.workflows.delete(args.workflow_id)
            print(f"Deleted workflow {args.workflow_id}")
            return EXIT_OK

        if args.command == "list-vars":
            for var in engine.variables.list():
                print(f"{var.name}={var.value}")
            return EXIT_OK

        if args.command == "set-var":
            engine.variables.set(
                GlobalVariable(name=args.name, value=args.value, description=args.description)
            )
            print(f"Set {args.name}")
            return EXIT_OK

        if args.command == "delete-var":
            engine.variables.delete(args.name)
            print(f"Deleted {args.name}")
            return EXIT_OK

        if args.command == "validate":
            inputs = _parse_assignments(args.variables)
            missing = engine.executor.missing_variables(args.workflow_id, inputs)
            if not missing:
                print("All placeholders resolve")
                return EXIT_OK
            for step_id, names in missing.items():
                print(f"{step_id}: {', '.join(names)}")
            return EXIT_MISSING_VARIABLES

        if args.command == "run":
            inputs = _parse_assignments(args.variables)
            return _run_workflow(engine, args.workflow_id, inputs)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_USAGE

    except NotFoundError as e:
        print(str(e), file=sys.stderr)
        return EXIT_NOT_FOUND

    except (ValueError, ValidationError) as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    except Exception:
        logger.exception("Command failed")
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
