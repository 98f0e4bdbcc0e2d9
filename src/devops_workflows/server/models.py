"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ExecuteRequest(BaseModel):
    variables: dict[str, str] = Field(default_factory=dict)


class ValidateResponse(BaseModel):
    ok: bool
    missing: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Step id -> placeholders without a value",
    )


class PreviewRequest(BaseModel):
    command: str
    variables: dict[str, str] = Field(default_factory=dict)


class PreviewResponse(BaseModel):
    command: str
    variables: list[str]
    missing: list[str]
    preview: str
