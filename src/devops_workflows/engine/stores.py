"""File-backed stores for workflow definitions and global variables.

Layout under the data directory:
- ``workflows/<id>.json``: one file per workflow
- ``global_variables.json``: a single list holding every global variable,
  rewritten in full on each change

Both stores keep an in-memory cache that is built at construction and written
through on every mutation while holding the store lock. Readers get copies.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from devops_workflows.engine.errors import (
    StoreError,
    VariableNotFoundError,
    WorkflowNotFoundError,
)
from devops_workflows.engine.models import GlobalVariable, Workflow, utc_now

logger = logging.getLogger(__name__)


def _write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


@dataclass
class WorkflowRepository:
    directory: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._cache: dict[str, Workflow] = {}
        self.reload()

    def _path_for(self, workflow_id: str) -> Path:
        return self.directory / f"{workflow_id}.json"

    def _load_unlocked(self) -> dict[str, Workflow]:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            files = sorted(p for p in self.directory.iterdir() if p.suffix == ".json")
        except OSError as e:
            raise StoreError(f"Cannot read workflow directory {self.directory}: {e}") from e

        workflows: dict[str, Workflow] = {}
        for path in files:
            if not path.is_file():
                continue
            try:
                workflow = Workflow.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValueError, ValidationError) as e:
                logger.warning(
                    "Skipping unreadable workflow file",
                    extra={"path": str(path), "error": str(e)},
                )
                continue
            if not workflow.id:
                workflow = workflow.model_copy(update={"id": path.stem})
            workflows[workflow.id] = workflow
        return workflows

    def reload(self) -> None:
        """Rebuild the cache from disk."""

        with self._lock:
            self._cache = self._load_unlocked()
        logger.info(
            "Workflow repository loaded",
            extra={"directory": str(self.directory), "workflows": len(self._cache)},
        )

    def list(self) -> list[Workflow]:
        with self._lock:
            workflows = [w.model_copy(deep=True) for w in self._cache.values()]
        workflows.sort(key=lambda w: (w.name.lower(), w.id))
        return workflows

    def get(self, workflow_id: str) -> Workflow:
        with self._lock:
            workflow = self._cache.get(workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id)
            return workflow.model_copy(deep=True)

    def save(self, workflow: Workflow) -> Workflow:
        """Insert or replace a workflow, assigning an id when it has none."""

        with self._lock:
            workflow_id = workflow.id or str(uuid.uuid4())
            existing = self._cache.get(workflow_id)
            now = utc_now()
            created_at = existing.created_at if existing is not None else workflow.created_at
            saved = workflow.model_copy(
                deep=True,
                update={"id": workflow_id, "created_at": created_at or now, "updated_at": now},
            )
            try:
                _write_json(self._path_for(workflow_id), saved.model_dump(mode="json"))
            except OSError as e:
                raise StoreError(f"Cannot write workflow {workflow_id}: {e}") from e
            self._cache[workflow_id] = saved
            return saved.model_copy(deep=True)

    def delete(self, workflow_id: str) -> None:
        with self._lock:
            if workflow_id not in self._cache:
                raise WorkflowNotFoundError(workflow_id)
            try:
                self._path_for(workflow_id).unlink(missing_ok=True)
            except OSError as e:
                raise StoreError(f"Cannot delete workflow {workflow_id}: {e}") from e
            del self._cache[workflow_id]


@dataclass
class VariableStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._cache: dict[str, GlobalVariable] = self._load()

    def _load(self) -> dict[str, GlobalVariable]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read global variables from {self.path}: {e}") from e
        if not isinstance(raw, list):
            raise StoreError(f"Global variables file must hold a JSON list: {self.path}")
        try:
            variables = [GlobalVariable.model_validate(item) for item in raw]
        except ValidationError as e:
            raise StoreError(f"Invalid global variable in {self.path}: {e}") from e
        return {v.name: v for v in variables}

    def _save_unlocked(self) -> None:
        ordered = sorted(self._cache.values(), key=lambda v: v.name)
        try:
            _write_json(self.path, [v.model_dump(mode="json") for v in ordered])
        except OSError as e:
            raise StoreError(f"Cannot write global variables to {self.path}: {e}") from e

    def list(self) -> list[GlobalVariable]:
        with self._lock:
            return [self._cache[name].model_copy() for name in sorted(self._cache)]

    def get(self, name: str) -> GlobalVariable:
        with self._lock:
            variable = self._cache.get(name)
            if variable is None:
                raise VariableNotFoundError(name)
            return variable.model_copy()

    def set(self, variable: GlobalVariable) -> GlobalVariable:
        with self._lock:
            existing = self._cache.get(variable.name)
            now = utc_now()
            created_at = existing.created_at if existing is not None else variable.created_at
            stored = variable.model_copy(
                update={"created_at": created_at or now, "updated_at": now}
            )
            self._cache[stored.name] = stored
            try:
                self._save_unlocked()
            except StoreError:
                # Keep the cache consistent with what is on disk.
                if existing is None:
                    del self._cache[stored.name]
                else:
                    self._cache[stored.name] = existing
                raise
            return stored.model_copy()

    def delete(self, name: str) -> None:
        with self._lock:
            existing = self._cache.pop(name, None)
            if existing is None:
                raise VariableNotFoundError(name)
            try:
                self._save_unlocked()
            except StoreError:
                self._cache[name] = existing
                raise

    def get_all(self) -> dict[str, str]:
        """Snapshot of name -> value used for variable scope merging."""

        with self._lock:
            return {name: v.value for name, v in self._cache.items()}
