"""In-memory tracking of executions started through the REST API.

Executions are not persisted; a restart forgets them. Each started run gets a
background thread that drains its log stream into the application log so the
interpreter is never left writing to a stream nobody reads.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping

from devops_workflows.engine.errors import NotFoundError
from devops_workflows.engine.workflow.execution import ExecutionRecord, LogStream
from devops_workflows.engine.workflow.executor import WorkflowExecutor

logger = logging.getLogger(__name__)


class ExecutionNotFoundError(NotFoundError):
    def __init__(self, execution_id: str) -> None:
        super().__init__(execution_id)
        self.execution_id = execution_id

    def __str__(self) -> str:
        return f"execution not found: {self.execution_id}"


class ExecutionRegistry:
    def __init__(self, executor: WorkflowExecutor) -> None:
        self._executor = executor
        self._lock = threading.Lock()
        self._records: dict[str, ExecutionRecord] = {}

    def start(self, workflow_id: str, inputs: Mapping[str, str]) -> ExecutionRecord:
        record, stream = self._executor.execute(workflow_id, inputs)
        with self._lock:
            self._records[record.id] = record

        threading.Thread(
            target=_drain,
            name=f"execution-log-{record.id[:8]}",
            daemon=True,
            kwargs={"record": record, "stream": stream},
        ).start()
        return record

    def get(self, execution_id: str) -> ExecutionRecord:
        with self._lock:
            record = self._records.get(execution_id)
        if record is None:
            raise ExecutionNotFoundError(execution_id)
        return record

    def list(self) -> list[ExecutionRecord]:
        with self._lock:
            return list(self._records.values())

    def cancel(self, execution_id: str) -> ExecutionRecord:
        record = self.get(execution_id)
        record.cancel()
        logger.info("Cancellation requested", extra={"execution_id": execution_id})
        return record


def _drain(*, record: ExecutionRecord, stream: LogStream) -> None:
    for line in stream:
        logger.debug(line, extra={"execution_id": record.id, "workflow_id": record.workflow_id})
