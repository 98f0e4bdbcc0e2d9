"""Configuration for the workflow engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings shared by the CLI and the REST server.

    Environment variables:
    - WORKFLOW_DATA_DIR     (optional)
    - WORKFLOW_SHELL        (optional)
    - WORKFLOW_WORKING_DIR  (optional)
    - LOG_LEVEL             (optional)
    - LOG_FORMAT            (optional)

    Notes:
        Tests can point at a different env file with
        `EngineSettings(_env_file=path_to_env)`.
    """

    data_dir: Path = Field(
        default=Path("data"),
        validation_alias="WORKFLOW_DATA_DIR",
        description="Directory holding workflow definitions and global variables",
    )

    shell: str = Field(
        default="sh",
        validation_alias="WORKFLOW_SHELL",
        description="Shell used to run command steps as `<shell> -c <command>`",
    )

    working_dir: Path | None = Field(
        default=None,
        validation_alias="WORKFLOW_WORKING_DIR",
        description="Working directory for command steps (defaults to the process cwd)",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    log_format: Literal["json", "text"] = Field(
        default="json",
        validation_alias="LOG_FORMAT",
        description="json for structured logs, text for human-readable lines",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("shell")
    @classmethod
    def _shell_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("WORKFLOW_SHELL must not be empty")
        return value.strip()

    @property
    def workflows_dir(self) -> Path:
        """Directory with one JSON file per workflow."""

        return self.data_dir / "workflows"

    @property
    def variables_file(self) -> Path:
        """JSON file holding every global variable."""

        return self.data_dir / "global_variables.json"
