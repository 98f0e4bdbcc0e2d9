"""devops-workflows.

A workflow engine for shell command runbooks:
- workflows of ordered command / sub-workflow steps stored as JSON
- global variables merged with workflow defaults and run inputs
- conditions and success/failure hooks that redirect control flow
- live, cancellable execution with a streamed log
"""

__version__ = "0.1.0"

from devops_workflows.engine.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
