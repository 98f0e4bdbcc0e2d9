"""FastAPI server adapter for devops-workflows.

This module exposes a REST API over the workflow engine.

Design intent:
- Keep execution logic in `devops_workflows.engine.*`
- Keep server-specific concerns (routing, CORS, the execution registry) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from devops_workflows.server.app import create_app
