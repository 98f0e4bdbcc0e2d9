"""Console script entrypoint.

The CLI is implemented in `devops_workflows.engine.main`.
"""

from __future__ import annotations

from devops_workflows.engine.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
