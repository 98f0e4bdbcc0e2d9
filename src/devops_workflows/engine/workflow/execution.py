"""Runtime state shared between an interpreter thread and its observers.

The interpreter thread is the only writer of an :class:`ExecutionRecord`.
Every field is guarded by the record lock, so an HTTP handler or CLI may read
it at any time through :meth:`ExecutionRecord.snapshot`.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Iterator
from datetime import datetime

from devops_workflows.engine.models import (
    ExecutionLog,
    ExecutionStatus,
    LogLevel,
    WorkflowExecution,
    utc_now,
)

_CLOSED = object()


class LogStream:
    """Single-producer stream of log lines, closed exactly once.

    The buffer is unbounded so the interpreter never blocks on a slow reader.
    Iterating yields lines until the producer closes the stream.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[object] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def put(self, line: str) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("log stream is closed")
            self._queue.put(line)

    def close(self) -> bool:
        """Close the stream; returns False if it was already closed."""

        with self._lock:
            if self._closed:
                return False
            self._closed = True
            self._queue.put(_CLOSED)
            return True

    def get(self, timeout: float | None = None) -> str | None:
        """Next line, or None once the stream is closed.

        Raises ``queue.Empty`` if nothing arrives within ``timeout``.
        """

        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Leave the marker for any other reader.
            self._queue.put(_CLOSED)
            return None
        assert isinstance(item, str)
        return item

    def __iter__(self) -> Iterator[str]:
        while True:
            line = self.get()
            if line is None:
                return
            yield line


class ExecutionRecord:
    """Mutable, lock-protected state of one workflow run."""

    def __init__(
        self,
        *,
        execution_id: str,
        workflow_id: str,
        variables: dict[str, str],
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.id = execution_id
        self.workflow_id = workflow_id
        self._variables = dict(variables)
        self._cancel_event = cancel_event or threading.Event()
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._status = ExecutionStatus.RUNNING
        self._logs: list[ExecutionLog] = []
        self._start_time = utc_now()
        self._end_time: datetime | None = None

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def variables(self) -> dict[str, str]:
        return dict(self._variables)

    @property
    def status(self) -> ExecutionStatus:
        with self._lock:
            return self._status

    @property
    def logs(self) -> list[ExecutionLog]:
        with self._lock:
            return [log.model_copy() for log in self._logs]

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def cancel(self) -> None:
        """Kill the running command and stop the run at the next step boundary."""

        self._cancel_event.set()

    def append_log(self, *, step_id: str, level: LogLevel, message: str) -> ExecutionLog:
        entry = ExecutionLog(step_id=step_id, level=level, message=message)
        with self._lock:
            self._logs.append(entry)
        return entry

    def finish(self, status: ExecutionStatus) -> bool:
        """Move to a terminal status; only the first call has any effect."""

        if not status.is_terminal:
            raise ValueError(f"not a terminal status: {status.value}")
        with self._lock:
            if self._status.is_terminal:
                return False
            self._status = status
            self._end_time = utc_now()
        return True

    def mark_done(self) -> None:
        """Release waiters once the interpreter thread has nothing left to do."""

        self._done.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the interpreter thread is done. Returns False on timeout."""

        return self._done.wait(timeout)

    def snapshot(self) -> WorkflowExecution:
        with self._lock:
            return WorkflowExecution(
                id=self.id,
                workflow_id=self.workflow_id,
                status=self._status,
                variables=dict(self._variables),
                logs=[log.model_copy() for log in self._logs],
                start_time=self._start_time,
                end_time=self._end_time,
            )
