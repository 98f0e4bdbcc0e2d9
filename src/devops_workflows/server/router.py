"""Workflow, variable and execution endpoints.

All routes are mounted under `/api`. Not-found errors raised by the engine are
turned into 404 responses by the handler registered in `create_app`.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response

from devops_workflows.engine.models import GlobalVariable, Workflow, WorkflowExecution
from devops_workflows.engine.runtime import Engine
from devops_workflows.engine.templates import extract_variables, missing_variables, preview
from devops_workflows.server.execution_registry import ExecutionRegistry
from devops_workflows.server.models import (
    ExecuteRequest,
    PreviewRequest,
    PreviewResponse,
    ValidateResponse,
)

router = APIRouter()


def _engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if not isinstance(engine, Engine):
        raise HTTPException(status_code=500, detail="Workflow engine not configured")
    return engine


def _executions(request: Request) -> ExecutionRegistry:
    registry = getattr(request.app.state, "executions", None)
    if not isinstance(registry, ExecutionRegistry):
        raise HTTPException(status_code=500, detail="Execution registry not configured")
    return registry


@router.get("/workflows", response_model=list[Workflow])
def list_workflows(request: Request) -> list[Workflow]:
    return _engine(request).workflows.list()


@router.get("/workflows/{workflow_id}", response_model=Workflow)
def get_workflow(request: Request, workflow_id: str) -> Workflow:
    return _engine(request).workflows.get(workflow_id)


@router.post("/workflows", response_model=Workflow, status_code=201)
def save_workflow(request: Request, workflow: Workflow) -> Workflow:
    return _engine(request).workflows.save(workflow)


@router.delete("/workflows/{workflow_id}", status_code=204)
def delete_workflow(request: Request, workflow_id: str) -> Response:
    _engine(request).workflows.delete(workflow_id)
    return Response(status_code=204)


@router.post("/workflows/{workflow_id}/execute", response_model=WorkflowExecution)
def execute_workflow(
    request: Request, workflow_id: str, req: ExecuteRequest | None = None
) -> WorkflowExecution:
    inputs = req.variables if req is not None else {}
    record = _executions(request).start(workflow_id, inputs)
    return record.snapshot()


@router.post("/workflows/{workflow_id}/validate", response_model=ValidateResponse)
def validate_workflow(
    request: Request, workflow_id: str, req: ExecuteRequest | None = None
) -> ValidateResponse:
    inputs = req.variables if req is not None else {}
    missing = _engine(request).executor.missing_variables(workflow_id, inputs)
    return ValidateResponse(ok=not missing, missing=missing)


@router.get("/variables", response_model=list[GlobalVariable])
def list_variables(request: Request) -> list[GlobalVariable]:
    return _engine(request).variables.list()


@router.get("/variables/{name}", response_model=GlobalVariable)
def get_variable(request: Request, name: str) -> GlobalVariable:
    return _engine(request).variables.get(name)


@router.post("/variables", response_model=GlobalVariable, status_code=201)
def set_variable(request: Request, variable: GlobalVariable) -> GlobalVariable:
    return _engine(request).variables.set(variable)


@router.delete("/variables/{name}", status_code=204)
def delete_variable(request: Request, name: str) -> Response:
    _engine(request).variables.delete(name)
    return Response(status_code=204)


@router.post("/templates/preview", response_model=PreviewResponse)
def preview_template(req: PreviewRequest) -> PreviewResponse:
    return PreviewResponse(
        command=req.command,
        variables=extract_variables(req.command),
        missing=missing_variables(req.command, req.variables),
        preview=preview(req.command, req.variables),
    )


@router.get("/executions", response_model=list[WorkflowExecution])
def list_executions(request: Request) -> list[WorkflowExecution]:
    snapshots = [record.snapshot() for record in _executions(request).list()]
    snapshots.sort(key=lambda e: e.start_time, reverse=True)
    return snapshots


@router.get("/executions/{execution_id}", response_model=WorkflowExecution)
def get_execution(request: Request, execution_id: str) -> WorkflowExecution:
    return _executions(request).get(execution_id).snapshot()


@router.post("/executions/{execution_id}/cancel", response_model=WorkflowExecution)
def cancel_execution(request: Request, execution_id: str) -> WorkflowExecution:
    return _executions(request).cancel(execution_id).snapshot()
