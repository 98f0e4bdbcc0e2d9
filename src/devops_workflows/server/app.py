"""FastAPI app factory.

Endpoints are intentionally thin wrappers over the engine services.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from devops_workflows import __version__
from devops_workflows.engine.errors import NotFoundError, StoreError
from devops_workflows.engine.runtime import Engine
from devops_workflows.server.config import ServerSettings
from devops_workflows.server.execution_registry import ExecutionRegistry
from devops_workflows.server.router import router as workflow_router

logger = logging.getLogger(__name__)


def create_app(settings: ServerSettings | None = None) -> FastAPI:
    settings = settings or ServerSettings()

    app = FastAPI(
        title="DevOps Workflows",
        version=__version__,
        description="REST API over the devops-workflows engine.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Opening the stores reads them from disk; a StoreError here stops startup.
    engine = Engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.executions = ExecutionRegistry(engine.executor)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    def not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    def store_error(_request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Storage error", extra={"error": str(exc)})
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    app.include_router(workflow_router, prefix="/api")
    return app
