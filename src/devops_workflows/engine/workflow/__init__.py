"""Workflow execution.

This package holds the interpreter and the pieces it drives:
- the shell primitive that runs one command and streams its lines
- condition evaluation over step output and exit codes
- the lock-protected execution record and its log stream
- the executor loop itself
"""

from devops_workflows.engine.workflow.execution import ExecutionRecord, LogStream
from devops_workflows.engine.workflow.executor import WorkflowExecutor

__all__ = ["ExecutionRecord", "LogStream", "WorkflowExecutor"]
